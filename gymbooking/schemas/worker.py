from pydantic import BaseModel


class WaitlistSweepResult(BaseModel):
    courses_processed: int
    members_promoted: int
    courses_failed: int = 0


class PromotionDispatchResult(BaseModel):
    processed: int
    succeeded: int
