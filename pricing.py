"""
Pricing module for RentalHub
Pro-rated daily pricing with seasonal adjustments and duration discounts
"""

import math
from datetime import date, datetime, timedelta
from typing import Optional, Dict, Any, List
from utils import parse_datetime, elapsed_minutes

MINUTES_PER_DAY = 1440


def to_number(value) -> float:
    """Percentages arrive from PostgREST as numbers or numeric strings"""
    if value is None or value == '':
        return 0.0
    return float(value)


def round_money(amount: float) -> float:
    return math.floor(amount * 100 + 0.5) / 100


def _as_date(value) -> Optional[date]:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def season_for_day(day: datetime, seasonal_rates: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """First seasonal rate whose inclusive [start_date, end_date] contains the day"""
    for rate in seasonal_rates:
        start = _as_date(rate.get('start_date'))
        end = _as_date(rate.get('end_date'))
        if start is None or end is None:
            continue
        if start <= day.date() <= end:
            return rate
    return None


def day_price_with_season(day: datetime, base_daily_price: float,
                          seasonal_rates: List[Dict[str, Any]]) -> float:
    season = season_for_day(day, seasonal_rates)
    factor = 1 + to_number(season['adjustment_percent']) / 100 if season else 1
    return base_daily_price * factor


def pick_pricing_rule(pricing_rules: List[Dict[str, Any]], total_days: float) -> Optional[Dict[str, Any]]:
    """The rule with the largest min_days not exceeding the rental length"""
    eligible = [r for r in pricing_rules if to_number(r.get('min_days')) <= total_days]
    if not eligible:
        return None
    return max(eligible, key=lambda r: to_number(r.get('min_days')))


def calculate_final_price_pro_rated(start_at: datetime, end_at: datetime, base_daily_price,
                                    pricing_rules: List[Dict[str, Any]],
                                    seasonal_rates: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Price a rental day by day.

    Every full 24h block is charged at the base price adjusted by the season its
    first calendar day falls in; the leftover minutes are charged as a fraction of
    the following day's rate. The duration rule (discount or surcharge, stored with
    its sign) is applied to the whole sum, then the total is rounded to cents.
    """
    base_daily_price = to_number(base_daily_price)
    minutes = max(0, elapsed_minutes(start_at, end_at))

    if minutes == 0 or base_daily_price <= 0:
        return {
            'total': 0,
            'days': 0,
            'hours': 0,
            'minutes': 0,
            'price_per_day': base_daily_price,
            'avg_per_day': base_daily_price,
            'discount_applied': 0,
        }

    total_days = minutes / MINUTES_PER_DAY
    full_days = minutes // MINUTES_PER_DAY
    remainder = minutes % MINUTES_PER_DAY
    start_day = datetime(start_at.year, start_at.month, start_at.day)

    total = 0.0
    for i in range(full_days):
        total += day_price_with_season(start_day + timedelta(days=i), base_daily_price, seasonal_rates)

    if remainder > 0:
        tail_day = start_day + timedelta(days=full_days)
        total += day_price_with_season(tail_day, base_daily_price, seasonal_rates) * (remainder / MINUTES_PER_DAY)

    discount_applied = 0.0
    rule = pick_pricing_rule(pricing_rules, total_days)
    if rule:
        discount_applied = to_number(rule.get('discount_percent'))
        total *= 1 + discount_applied / 100

    total = round_money(total)

    return {
        'total': total,
        'days': total_days,
        'hours': (minutes % MINUTES_PER_DAY) // 60,
        'minutes': minutes % 60,
        'price_per_day': base_daily_price,
        'avg_per_day': total / total_days,
        'discount_applied': discount_applied,
    }


def billable_days_for_extras(minutes: int) -> int:
    if minutes <= 0:
        return 0
    return max(1, math.ceil(minutes / MINUTES_PER_DAY))


def calculate_extras_total(picked_extras: List[str], extras_by_id: Dict[str, Dict[str, Any]],
                           billable_days: int) -> float:
    total = 0.0
    for extra_id in picked_extras:
        extra = extras_by_id.get(extra_id)
        if not extra:
            continue
        multiplier = (billable_days or 1) if extra.get('price_type') == 'per_day' else 1
        total += to_number(extra.get('price')) * multiplier
    return round_money(total)


def calculate_booking_price(car: Dict[str, Any], start_at, end_at,
                            pricing_rules: List[Dict[str, Any]],
                            seasonal_rates: List[Dict[str, Any]],
                            picked_extras: Optional[List[str]] = None,
                            extras_by_id: Optional[Dict[str, Dict[str, Any]]] = None,
                            mark: str = 'booking',
                            delivery: str = 'car_address',
                            delivery_fee=0) -> Dict[str, Any]:
    """Full price breakdown for a booking or a host block"""
    base_daily_price = to_number(car.get('price'))
    start = parse_datetime(start_at)
    end = parse_datetime(end_at)

    if start is None or end is None:
        return {
            'base_daily_price': base_daily_price,
            'base_total': 0,
            'avg_per_day': base_daily_price,
            'discount_applied': 0,
            'total_minutes': 0,
            'duration_days': 0,
            'duration_hours': 0,
            'duration_minutes': 0,
            'billable_days_for_extras': 0,
            'extras_total': 0,
            'delivery_fee': 0,
            'price_total': 0,
        }

    minutes = max(0, elapsed_minutes(start, end))
    base = calculate_final_price_pro_rated(start, end, base_daily_price, pricing_rules, seasonal_rates)

    billable_days = billable_days_for_extras(minutes)
    extras_total = calculate_extras_total(picked_extras or [], extras_by_id or {}, billable_days)
    fee = to_number(delivery_fee) if delivery == 'by_address' else 0.0

    addons = extras_total + fee if mark == 'booking' else 0.0
    price_total = round_money(base['total'] + addons)

    return {
        'base_daily_price': base_daily_price,
        'base_total': base['total'],
        'avg_per_day': base['avg_per_day'],
        'discount_applied': base['discount_applied'],
        'total_minutes': minutes,
        'duration_days': minutes // MINUTES_PER_DAY,
        'duration_hours': (minutes % MINUTES_PER_DAY) // 60,
        'duration_minutes': minutes % 60,
        'billable_days_for_extras': billable_days,
        'extras_total': extras_total,
        'delivery_fee': fee,
        'price_total': price_total,
    }
