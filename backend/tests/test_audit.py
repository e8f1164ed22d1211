from donation_core.models.audit import AuditLog
from donation_core.services.audit_service import AuditService
from donation_core.services.refund_service import RefundService


def test_chain_links_each_entry_to_the_previous(db, make_payment):
    payment = make_payment()

    trail = AuditService.get_trail(db, "payment", payment.id)

    assert trail[0].previous_hash == ""
    assert trail[1].previous_hash == trail[0].payload_hash
    assert AuditService.verify_chain(db, "payment", payment.id) == {
        "valid": True, "total_entries": 2, "broken_at": None,
    }


def test_chains_are_per_entity(db, make_payment):
    first, second = make_payment(), make_payment()

    first_trail = AuditService.get_trail(db, "payment", first.id)
    second_trail = AuditService.get_trail(db, "payment", second.id)

    assert second_trail[0].previous_hash == ""
    assert {e.entity_id for e in first_trail} == {first.id}


def test_edited_snapshot_is_detected(db, gateway, make_payment, admin):
    payment = make_payment(amount=100000)
    RefundService.refund(db, gateway, payment.id, 10000, "Partial", admin)
    refund_entry = AuditService.get_trail(db, "payment", payment.id)[-1]

    refund_entry.after = {**refund_entry.after, "refunded_amount": 1}
    db.commit()

    result = AuditService.verify_chain(db, "payment", payment.id)
    assert result["valid"] is False
    assert result["broken_at"] == refund_entry.id


def test_deleted_entry_breaks_the_chain(db, make_payment):
    payment = make_payment()
    created = AuditService.get_trail(db, "payment", payment.id)[0]

    db.query(AuditLog).filter(AuditLog.id == created.id).delete()
    db.commit()

    assert AuditService.verify_chain(db, "payment", payment.id)["valid"] is False


def test_unknown_entity_has_empty_valid_chain(db):
    assert AuditService.verify_chain(db, "payment", 12345) == {"valid": True, "total_entries": 0, "broken_at": None}
