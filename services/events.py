from dataclasses import dataclass
from datetime import date

from blinker import Namespace

ledger_signals = Namespace()

# Sent once per credited investor after a day resolution commits.
# Receivers get ``event=ProfitDistributed(...)``.
profit_distributed = ledger_signals.signal('profit-distributed')


@dataclass(frozen=True)
class ProfitDistributed:
    investor_id: int
    date: date
    amount: float


def publish(events, sender=None):
    for event in events:
        profit_distributed.send(sender, event=event)
