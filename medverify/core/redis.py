import redis.asyncio as redis
from medverify.core.config import settings

class RedisClient:
    def __init__(self, url: str | None = None):
        url = url or settings.REDIS_URL
        self.redis = redis.from_url(url, encoding="utf-8", decode_responses=True) if url else None

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    async def set_token(self, token: str, value: str, expire: int):
        await self.redis.set(f"token:{token}", value, ex=expire)

    async def get_token(self, token: str) -> str | None:
        return await self.redis.get(f"token:{token}")

    async def delete_token(self, token: str):
        await self.redis.delete(f"token:{token}")

    async def close(self):
        if self.redis is not None:
            await self.redis.close()

redis_client = RedisClient()
