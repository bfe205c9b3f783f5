from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, getcontext
from typing import Dict
import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from amm_indexer.sources.amm_pipeline.config.settings import (
    DEFAULT_TOKEN_DECIMALS,
    SNAPSHOT_BUCKET_SECONDS,
    SWAP_FEE_RATE,
    TOKEN_DECIMALS_OVERRIDES,
    USD_STABLE_ADDRESS,
    USD_STABLE_DECIMALS,
    VOLUME_DECIMALS,
    WRAPPED_NATIVE_ADDRESS,
    WRAPPED_NATIVE_DECIMALS,
)
from amm_indexer.storage.models.amm_pair import AmmPair
from amm_indexer.storage.models.amm_transaction import AmmTransaction

logger = logging.getLogger(__name__)

getcontext().prec = 50  # reserves are uint112

ZERO = Decimal(0)
FEE_RATE = Decimal(SWAP_FEE_RATE)
DAYS_PER_YEAR = 365
STORE_QUANTUM = Decimal("1e-18")


def to_units(amount, decimals: int) -> Decimal:
    """Base-unit integer (int or decimal string) → human units."""
    return Decimal(int(amount)) / (Decimal(10) ** decimals)


class TokenRegistry:
    """Known token roles and decimal counts; unknown tokens default to 18."""

    def __init__(
        self,
        native_address: str = WRAPPED_NATIVE_ADDRESS,
        stable_address: str = USD_STABLE_ADDRESS,
        native_decimals: int = WRAPPED_NATIVE_DECIMALS,
        stable_decimals: int = USD_STABLE_DECIMALS,
        overrides: Dict[str, int] | None = None,
        default_decimals: int = DEFAULT_TOKEN_DECIMALS,
    ):
        self.native = native_address.lower()
        self.stable = stable_address.lower()
        self.default_decimals = default_decimals
        self._decimals = {self.native: native_decimals, self.stable: stable_decimals}
        for address, decimals in (TOKEN_DECIMALS_OVERRIDES if overrides is None else overrides).items():
            self._decimals[address.lower()] = int(decimals)

    def decimals_of(self, address: str) -> int:
        return self._decimals.get(address.lower(), self.default_decimals)

    def is_native(self, address: str) -> bool:
        return address.lower() == self.native

    def is_stable(self, address: str) -> bool:
        return address.lower() == self.stable


@dataclass(frozen=True)
class PairSnapshotValues:
    tvl_usd: Decimal
    price_token0: Decimal
    price_token1: Decimal
    volume_24h: Decimal
    fees_24h: Decimal
    apr: Decimal
    reserve0: str
    reserve1: str
    total_supply: str

    def as_row(self, pair_address: str, bucket: datetime) -> dict:
        row = {"pair_address": pair_address, "snapshot_timestamp": bucket}
        for name in ("tvl_usd", "price_token0", "price_token1", "volume_24h", "fees_24h", "apr"):
            row[name] = getattr(self, name).quantize(STORE_QUANTUM)
        row.update(reserve0=self.reserve0, reserve1=self.reserve1, total_supply=self.total_supply)
        return row


def hour_bucket(now: datetime) -> datetime:
    """Start of the snapshot bucket ``now`` falls in."""
    epoch = int(now.timestamp())
    return datetime.fromtimestamp(epoch - epoch % SNAPSHOT_BUCKET_SECONDS, tz=now.tzinfo)


def resolve_native_price_usd(db: Session, tokens: TokenRegistry) -> Decimal:
    """USD price of the wrapped-native token from the native/stable pair, or 0."""
    pair = db.execute(
        select(AmmPair).where(
            or_(
                and_(AmmPair.token0_address == tokens.native, AmmPair.token1_address == tokens.stable),
                and_(AmmPair.token0_address == tokens.stable, AmmPair.token1_address == tokens.native),
            )
        ).order_by(AmmPair.id)
    ).scalars().first()
    if pair is None:
        logger.warning("No wrapped-native/stable pair indexed; native price is 0")
        return ZERO

    if tokens.is_native(pair.token0_address):
        native_raw, stable_raw = pair.reserve0, pair.reserve1
    else:
        native_raw, stable_raw = pair.reserve1, pair.reserve0

    native = to_units(native_raw, tokens.decimals_of(tokens.native))
    stable = to_units(stable_raw, tokens.decimals_of(tokens.stable))
    if native <= 0 or stable <= 0:
        return ZERO
    return stable / native


def _tvl(pair: AmmPair, r0: Decimal, r1: Decimal, native_price_usd: Decimal, tokens: TokenRegistry) -> Decimal:
    if tokens.is_stable(pair.token0_address):
        return 2 * r0
    if tokens.is_stable(pair.token1_address):
        return 2 * r1
    if native_price_usd > 0:
        if tokens.is_native(pair.token0_address):
            return 2 * r0 * native_price_usd
        if tokens.is_native(pair.token1_address):
            return 2 * r1 * native_price_usd
    # $1 per token placeholder, not a price
    return r0 + r1


def volume_24h(db: Session, pair_address: str, now: datetime) -> Decimal:
    """Trailing-24h swap volume, token0 side, assuming 18 decimals."""
    rows = db.execute(
        select(AmmTransaction.amount0, AmmTransaction.amount0_out)
        .where(AmmTransaction.pair_address == pair_address)
        .where(AmmTransaction.event_type == "swap")
        .where(AmmTransaction.timestamp >= now - timedelta(hours=24))
        .where(AmmTransaction.timestamp <= now)
    ).all()
    total = sum((max(int(a_in or 0), int(a_out or 0)) for a_in, a_out in rows), 0)
    return to_units(total, VOLUME_DECIMALS)


def compute_snapshot(
    db: Session,
    pair: AmmPair,
    native_price_usd: Decimal,
    now: datetime,
    tokens: TokenRegistry,
) -> PairSnapshotValues:
    r0 = to_units(pair.reserve0, tokens.decimals_of(pair.token0_address))
    r1 = to_units(pair.reserve1, tokens.decimals_of(pair.token1_address))

    tvl = _tvl(pair, r0, r1, native_price_usd, tokens)
    if r0 > 0 and r1 > 0:
        price0, price1 = r1 / r0, r0 / r1
    else:
        price0 = price1 = ZERO

    volume = volume_24h(db, pair.pair_address, now)
    fees = volume * FEE_RATE
    apr = (fees * DAYS_PER_YEAR / tvl) * 100 if tvl > 0 else ZERO

    return PairSnapshotValues(
        tvl_usd=tvl,
        price_token0=price0,
        price_token1=price1,
        volume_24h=volume,
        fees_24h=fees,
        apr=apr,
        reserve0=pair.reserve0,
        reserve1=pair.reserve1,
        total_supply=pair.total_supply,
    )
