def make_signature(owner_id: int, original_name: str, size_bytes: int) -> str:
    """Fingerprint of an upload. Same triple, same string."""
    return f"{owner_id}-{original_name}-{size_bytes}"
