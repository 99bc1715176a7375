import hashlib

# sha256 hex digest
IDENTITY_LENGTH = 64


def resolve_identity(
        address: str | None,
        user_agent: str | None,
        session_token: str | None = None,
        salt: str = ""
) -> str:
    """
    Derive an anonymous visitor identity from request metadata.

    The identity is a one-way digest of the client address and user-agent, so the
    same pair always maps to the same identity and neither value can be recovered.
    A client-supplied session token, when present, is folded into the digest.
    Without a user-agent the digest covers the address alone.
    """
    parts = [salt, address or ""]
    if user_agent:
        parts.append(user_agent)
    if session_token:
        parts.append(session_token)

    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def client_address(
        peer: str | None,
        headers,
        trust_forwarded_for: bool = False
) -> str:
    """Pick the client address, honouring proxy headers only when configured to"""
    if trust_forwarded_for:
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()

    return peer or "unknown"
