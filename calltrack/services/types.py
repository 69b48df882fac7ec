from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from typing import Literal, Optional, List
from datetime import datetime, timezone
from enum import Enum

TWITTER_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


class CallType(str, Enum):
    SPOT_BUY = "spot_buy"
    LONG = "long"
    ICO_PRESALE = "ico_presale"
    AIRDROP_FARMING = "airdrop_farming"
    COMMENTARY = "commentary"
    TAX_STRATEGY = "tax_strategy"
    OTHER = "other"


# Only these call types count as an actionable buy/long recommendation
ACTIONABLE_CALL_TYPES = frozenset({CallType.SPOT_BUY, CallType.LONG})


class Sentiment(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class FailureReason(str, Enum):
    UNKNOWN_TICKER = "unknown_ticker"
    RATE_LIMITED = "rate_limited"
    HTTP_ERROR = "http_error"
    TRANSPORT_ERROR = "transport_error"
    NO_DATA = "no_data"


class Post(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    username: str
    created_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        # Scrapers emit numeric ids as int or str
        return str(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, v):
        if isinstance(v, str):
            try:
                return datetime.strptime(v, TWITTER_DATE_FORMAT)
            except ValueError:
                return v  # let pydantic handle ISO-8601
        return v

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ClassificationVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_call: bool = False
    call_type: CallType = CallType.OTHER
    confidence: int = 0
    tickers: List[str] = []
    sentiment: Sentiment = Sentiment.NEUTRAL
    reasoning: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        try:
            v = int(round(float(v)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, v))

    @model_validator(mode="before")
    @classmethod
    def _enforce_call_type(cls, data):
        if isinstance(data, dict) and data.get("is_call"):
            if data.get("call_type", CallType.OTHER) not in ACTIONABLE_CALL_TYPES:
                data = {**data, "is_call": False}
        return data


class CanonicalTicker(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    provider_id: Optional[str] = None


class PriceQuote(BaseModel):
    ticker: str
    price: float
    date: str  # dd-mm-yyyy
    provenance: Literal["historical", "current"]


class PriceLookup(BaseModel):
    """Outcome of a historical price lookup, optionally with the current price attached."""
    success: bool
    price: Optional[float] = None
    current_price: Optional[float] = None
    date: Optional[str] = None
    coin_id: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[FailureReason] = None
    status_code: Optional[int] = None

    def quotes(self, ticker: str) -> List[PriceQuote]:
        out = []
        if self.success and self.price is not None:
            out.append(PriceQuote(ticker=ticker, price=self.price, date=self.date, provenance="historical"))
        if self.current_price is not None:
            today = datetime.now(timezone.utc).strftime("%d-%m-%Y")
            out.append(PriceQuote(ticker=ticker, price=self.current_price, date=today, provenance="current"))
        return out


class CallRecord(BaseModel):
    post_id: str
    post_text: str
    post_date: datetime
    username: str
    ticker: str
    price_at_call: Optional[float] = None
    current_price: Optional[float] = None
    roi_percent: Optional[float] = None
    is_successful: Optional[bool] = None
    confidence: int = 0
    reasoning: Optional[str] = None
    chart_data: Optional[List[float]] = None

    @model_validator(mode="after")
    def _derive_roi(self):
        # ROI and success exist iff both prices do
        if self.price_at_call and self.current_price is not None:
            self.roi_percent = (self.current_price - self.price_at_call) / self.price_at_call * 100
            self.is_successful = self.roi_percent > 0
        else:
            self.roi_percent = None
            self.is_successful = None
        return self

    @property
    def resolved(self) -> bool:
        return self.roi_percent is not None


class InfluencerStats(BaseModel):
    username: str
    total_posts: int = 0
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    success_rate: float = 0.0
    total_roi: float = 0.0
    avg_roi: float = 0.0
    hypothetical_pnl: float = 0.0
    calls: List[CallRecord] = []
