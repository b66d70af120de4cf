"""
Transfer Coordinator.

Moves the branch attribution of points inside one brand. The balance does not
change: the transfer_out / transfer_in pair nets to zero and both rows commit
together or not at all.
"""

import logging
import uuid
from dataclasses import dataclass

from brands.models import Branch
from loyalty import ledger
from loyalty.exceptions import InsufficientPoints, InvalidTransfer
from loyalty.ledger import locked_account, retry_on_conflict
from loyalty.models import PointTransaction

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    transfer_id: str
    points: int
    balance: int
    transfer_out_id: int
    transfer_in_id: int
    success: bool = True


class TransferCoordinator:
    def _branch(self, branch_id, brand_id):
        branch = Branch.objects.filter(pk=branch_id).first()
        if branch is None or branch.brand_id != brand_id:
            raise InvalidTransfer(f"Branch {branch_id} does not belong to the account's brand.")
        return branch

    @retry_on_conflict
    def transfer_branch_attribution(self, account_id, from_branch_id, to_branch_id, points, reason=""):
        if from_branch_id == to_branch_id:
            raise InvalidTransfer("Source and destination branch must differ.")
        if points <= 0:
            raise InvalidTransfer("Transfer points must be positive.")

        with locked_account(account_id) as account:
            from_branch = self._branch(from_branch_id, account.brand_id)
            to_branch = self._branch(to_branch_id, account.brand_id)

            if account.current_points < points:
                raise InsufficientPoints(
                    f"Insufficient points. Balance: {account.current_points}, Required: {points}",
                    balance=account.current_points,
                    required=points,
                )

            balance_before = account.current_points
            transfer_id = uuid.uuid4().hex
            metadata = {
                "transfer_id": transfer_id,
                "from_branch_id": from_branch.pk,
                "to_branch_id": to_branch.pk,
                "reason": reason,
            }

            out_entry = ledger.append(
                account,
                transaction_type=PointTransaction.TRANSFER_OUT,
                points=-points,
                branch=from_branch,
                description=f"Transfer to {to_branch.name}",
                metadata=metadata,
            )
            in_entry = ledger.append(
                account,
                transaction_type=PointTransaction.TRANSFER_IN,
                points=points,
                branch=to_branch,
                description=f"Transfer from {from_branch.name}",
                metadata=metadata,
            )

            if account.current_points != balance_before:
                # Unreachable while both appends use the same magnitude; rolls back the pair.
                raise RuntimeError(f"Transfer {transfer_id} changed the balance of account {account.pk}")

            account.preferred_branch = to_branch
            account.save(update_fields=["preferred_branch", "updated_at"])

        logger.info(
            "Transferred %s points of account %s from branch %s to %s",
            points,
            account.pk,
            from_branch.pk,
            to_branch.pk,
        )
        return TransferResult(
            transfer_id=transfer_id,
            points=points,
            balance=account.current_points,
            transfer_out_id=out_entry.pk,
            transfer_in_id=in_entry.pk,
        )
