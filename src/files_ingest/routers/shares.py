from fastapi import APIRouter, Depends, Path

from files_ingest.dependencies import get_share_issuer
from files_ingest.schemas import SharedFileResponse
from files_ingest.services.shares import ShareTokenIssuer

router = APIRouter()


@router.get("/s/{token}", response_model=SharedFileResponse)
def access_shared_file(
    token: str = Path(..., description="Share token"),
    shares: ShareTokenIssuer = Depends(get_share_issuer),
):
    """
    Resolve a share link. No user header is needed; the token is the credential.

    Expired, consumed and unknown tokens all answer 404.
    """
    return shares.access_shared_file(token)
