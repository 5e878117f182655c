from sqlalchemy.orm import Session
from tripc.models.setting import Setting

DEFAULT_USD_TO_VND = 25450

def get_usd_to_vnd_rate(db: Session) -> int:
    s = db.get(Setting, "USD_TO_VND")
    if s and s.int_value:
        return int(s.int_value)
    return DEFAULT_USD_TO_VND

def set_usd_to_vnd_rate(db: Session, rate: int) -> int:
    if rate <= 0:
        raise ValueError("rate must be > 0")
    s = db.get(Setting, "USD_TO_VND")
    if not s:
        s = Setting(key="USD_TO_VND", int_value=int(rate), str_value=None)
        db.add(s)
    else:
        s.int_value = int(rate)
    db.commit()
    return int(rate)

def convert_amount(db: Session, amount: int, from_currency: str, to_currency: str) -> int:
    """Convert between USD cents and VND dong (both smallest units)."""
    src, dst = from_currency.upper(), to_currency.upper()
    if src == dst:
        return int(amount)
    rate = get_usd_to_vnd_rate(db)
    if src == "USD" and dst == "VND":
        return int(round(amount * rate / 100))
    if src == "VND" and dst == "USD":
        return int(round(amount * 100 / rate))
    raise ValueError(f"unsupported currency pair {src}->{dst}")
