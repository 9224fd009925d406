"""
BountyHub - Authentication Package

Session-based authentication with rotating token pairs:
- Short-lived JWT access tokens bound to a server-side session
- Refresh tokens stored only as SHA-256 hashes, one live hash per session
- Rotation on every refresh, with replay detection
- bcrypt password hashing
- RBAC with deny-by-default
- Hash-chained audit trail
"""
