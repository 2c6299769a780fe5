"""
Service layer: quota, admission, shares, audit and file queries.
"""
