from mytrainer.schemas.base import CamelModel


class ReminderRunRead(CamelModel):
    ok: bool = True
    scanned: int
    sent: int
    skipped: int
    failed: int = 0
