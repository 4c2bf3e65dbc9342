from .redis import redis_client

IDEMPOTENCY_TTL_SECONDS = 60 * 60 * 24


def processed_key(event_id: str) -> str:
    return f"processed_event:{event_id}"


async def already_processed(event_id: str, client=None) -> bool:
    """
    Claims an event id. Returns True when another delivery already claimed it.
    Without Redis every delivery is treated as new (handlers must stay idempotent).
    """
    client = client if client is not None else redis_client
    if client is None:
        return False
    claimed = await client.set(processed_key(event_id), "1", ex=IDEMPOTENCY_TTL_SECONDS, nx=True)
    return not claimed
