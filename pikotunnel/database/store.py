# pikotunnel/database/store.py
"""
Peer and AccessRule persistence
Single-record reads and writes; every write commits on its own
"""

from datetime import datetime
from typing import Iterable, List, Optional, Set

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import Peer, PeerStatus, AccessRule, AccessRuleStatus


def _value(status) -> str:
    return status.value if hasattr(status, "value") else status


def make_pair_key(peer_a_id: str, peer_b_id: str) -> str:
    """Order-independent key for a peer pair"""
    first, second = sorted((peer_a_id, peer_b_id))
    return f"{first}:{second}"


# === Peers ===

def get_peer(db: Session, peer_id: str) -> Optional[Peer]:
    return db.query(Peer).filter(Peer.id == peer_id).first()


def get_peer_ip(db: Session, peer_id: str) -> Optional[str]:
    row = db.query(Peer.ip).filter(Peer.id == peer_id).first()
    return row[0] if row else None


def list_peers(db: Session) -> List[Peer]:
    return db.query(Peer).order_by(Peer.created_at).all()


def list_peers_by_status(db: Session, *statuses: PeerStatus) -> List[Peer]:
    return db.query(Peer).filter(
        Peer.status.in_([_value(s) for s in statuses])
    ).order_by(Peer.created_at).all()


def used_ips(db: Session) -> Set[str]:
    """Addresses held by every peer still in the store, whatever its status"""
    return {ip for (ip,) in db.query(Peer.ip).all()}


def add_peer(db: Session, peer: Peer) -> Peer:
    """Insert a peer; IntegrityError propagates after rollback"""
    db.add(peer)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(peer)
    return peer


def transition_peer_status(
    db: Session,
    peer_id: str,
    from_statuses: Iterable[PeerStatus],
    to_status: PeerStatus
) -> bool:
    """
    Compare-and-set a peer's status

    Returns:
        True if the row was still in one of from_statuses and got updated
    """
    updated = db.query(Peer).filter(
        Peer.id == peer_id,
        Peer.status.in_([_value(s) for s in from_statuses])
    ).update(
        {Peer.status: _value(to_status), Peer.updated_at: datetime.utcnow()},
        synchronize_session=False
    )
    db.commit()
    return updated == 1


def get_peer_status(db: Session, peer_id: str) -> Optional[str]:
    """Current status straight from the table, bypassing objects cached in the session"""
    row = db.query(Peer.status).filter(Peer.id == peer_id).first()
    return row[0] if row else None


def delete_peer(db: Session, peer_id: str) -> bool:
    """Delete a peer; IntegrityError (rules still reference it) propagates after rollback"""
    try:
        deleted = db.query(Peer).filter(Peer.id == peer_id).delete(synchronize_session=False)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    return deleted == 1


# === Access rules ===

def get_access_rule(db: Session, rule_id: str) -> Optional[AccessRule]:
    return db.query(AccessRule).filter(AccessRule.id == rule_id).first()


def find_access_rule(db: Session, peer_a_id: str, peer_b_id: str) -> Optional[AccessRule]:
    """Look up the rule for {peer_a_id, peer_b_id} in either order"""
    return db.query(AccessRule).filter(
        AccessRule.pair_key == make_pair_key(peer_a_id, peer_b_id)
    ).first()


def list_access_rules(db: Session) -> List[AccessRule]:
    return db.query(AccessRule).order_by(AccessRule.created_at).all()


def list_access_rules_by_status(db: Session, *statuses: AccessRuleStatus) -> List[AccessRule]:
    return db.query(AccessRule).filter(
        AccessRule.status.in_([_value(s) for s in statuses])
    ).order_by(AccessRule.created_at).all()


def list_access_rules_for_peer(db: Session, peer_id: str) -> List[AccessRule]:
    return db.query(AccessRule).filter(
        or_(AccessRule.peer_a_id == peer_id, AccessRule.peer_b_id == peer_id)
    ).all()


def add_access_rule(db: Session, rule: AccessRule) -> AccessRule:
    """Insert a rule; IntegrityError (duplicate pair) propagates after rollback"""
    rule.pair_key = make_pair_key(rule.peer_a_id, rule.peer_b_id)
    db.add(rule)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(rule)
    return rule


def transition_access_rule_status(
    db: Session,
    rule_id: str,
    from_statuses: Iterable[AccessRuleStatus],
    to_status: AccessRuleStatus
) -> bool:
    updated = db.query(AccessRule).filter(
        AccessRule.id == rule_id,
        AccessRule.status.in_([_value(s) for s in from_statuses])
    ).update(
        {AccessRule.status: _value(to_status), AccessRule.updated_at: datetime.utcnow()},
        synchronize_session=False
    )
    db.commit()
    return updated == 1


def delete_access_rule(db: Session, rule_id: str) -> bool:
    deleted = db.query(AccessRule).filter(AccessRule.id == rule_id).delete(synchronize_session=False)
    db.commit()
    return deleted == 1
