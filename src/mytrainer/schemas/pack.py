from mytrainer.schemas.base import CamelModel


class PackStatsRead(CamelModel):
    pack_id: int
    total: int
    consumed: int
    available: int
    cached_remaining: int
    status: str
