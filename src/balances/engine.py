"""
Balance Aggregation & Debt Simplification

Pure functions over ledger lines. Nothing here touches storage.

DESIGN DECISION: Simplification is a greedy match over sorted balances.
It is not globally minimal for every topology, but for a fixed input it
always produces the same transfers, which is what callers rely on.
Ties are broken by participant key (kind, id) so the order is total.
"""

from decimal import Decimal
from typing import Iterable

from src.amounts import ZERO
from src.models.balance import ParticipantBalance, Transfer
from src.models.ledger import Payment, Split
from src.models.participant import ParticipantRef


def aggregate_lines(
    payments: Iterable[Payment],
    splits: Iterable[Split],
) -> dict[ParticipantRef, tuple[Decimal, Decimal]]:
    """
    Total paid and total owed per participant.

    Keys keep first-appearance order, payments before splits.
    """
    paid: dict[ParticipantRef, Decimal] = {}
    owed: dict[ParticipantRef, Decimal] = {}
    order: dict[ParticipantRef, None] = {}

    for payment in payments:
        order.setdefault(payment.participant, None)
        paid[payment.participant] = paid.get(payment.participant, ZERO) + payment.amount
    for split in splits:
        order.setdefault(split.participant, None)
        owed[split.participant] = owed.get(split.participant, ZERO) + split.amount

    return {ref: (paid.get(ref, ZERO), owed.get(ref, ZERO)) for ref in order}


def simplify_debts(balances: Iterable[ParticipantBalance]) -> list[Transfer]:
    """
    Reduce net balances to a short list of debtor -> creditor transfers.

    1. Drop zero balances and split the rest into debtors and creditors
    2. Debtors most negative first, creditors most positive first
    3. Match the current pair for min(|debt|, credit), reduce both,
       and move past whichever reached zero

    Every transfer is positive, never a self-transfer, and never larger
    than either side's outstanding balance.
    """
    debtors = []
    creditors = []
    names = {}
    for entry in balances:
        names[entry.participant] = entry.display_name
        net = entry.balance
        if net < 0:
            debtors.append([entry.participant, -net])
        elif net > 0:
            creditors.append([entry.participant, net])

    debtors.sort(key=lambda d: (-d[1], d[0].sort_key))
    creditors.sort(key=lambda c: (-c[1], c[0].sort_key))

    transfers = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, debt = debtors[i]
        creditor, credit = creditors[j]
        amount = min(debt, credit)

        transfers.append(Transfer(
            debtor=debtor,
            creditor=creditor,
            amount=amount,
            debtor_name=names.get(debtor),
            creditor_name=names.get(creditor),
        ))

        debtors[i][1] = debt - amount
        creditors[j][1] = credit - amount
        if debtors[i][1] == 0:
            i += 1
        if creditors[j][1] == 0:
            j += 1

    return transfers
