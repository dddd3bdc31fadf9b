"""
PetitionSeal

Email-verified petition signing with tamper-evident audit records.

A signer proves control of an email address with a one-time code, receives a
short-lived verification token, and submits a signature bound to the exact
petition text. Each signature yields an audit hash that anyone can check
against the public verification endpoint without learning who signed.

Usage:
    uvicorn petitionseal.main:app

Components:
    hashing     - deterministic petition, signature, audit and OTP hashes
    otp         - one-time code issuance and single-use verification
    tokens      - stateless verification tokens
    signatures  - signature submission pipeline and petition stats
    audit       - public audit-hash verification
"""

__version__ = "1.0.0"
