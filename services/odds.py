from models import BetStatus


def american_to_decimal(american_odds):
    """
    Convert American odds to decimal odds

    Args:
        american_odds (int): American odds (e.g., +150, -200)

    Returns:
        float: Decimal odds
    """
    if american_odds == 0:
        raise ValueError('American odds cannot be zero')
    if american_odds > 0:
        # Positive odds: +X => 1 + X/100
        return 1 + american_odds / 100
    else:
        # Negative odds: -Y => 1 + 100/abs(Y)
        return 1 + 100 / abs(american_odds)


def decimal_to_american(decimal_odds):
    """
    Convert decimal odds to American odds

    Args:
        decimal_odds (float): Decimal odds

    Returns:
        int: American odds, or None for odds of 1.0 or less
    """
    if decimal_odds <= 1.0:
        return None
    if decimal_odds >= 2.0:
        # Positive American odds
        return int(round((decimal_odds - 1) * 100))
    else:
        # Negative American odds
        return int(round(-100 / (decimal_odds - 1)))


def calculate_payout(stake, decimal_odds):
    """Gross return (stake included) if the bet wins, rounded to cents."""
    return round(stake * decimal_odds, 2)


def compute_bet_profit(stake, odds, status):
    """
    Profit of a single bet for a given outcome.

    Returns None while the bet is PENDING; callers must never fold
    a None profit into a daily total.
    """
    status = BetStatus(status)
    if status == BetStatus.PENDING:
        return None
    if status == BetStatus.WON:
        return stake * (odds - 1)
    if status == BetStatus.LOST:
        return -stake
    if status == BetStatus.VOID:
        return 0.0
    if status == BetStatus.HALF_WON:
        return stake * (odds - 1) / 2
    # HALF_LOST
    return -stake / 2
