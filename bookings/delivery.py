from bookings.choices import DeliveryStatus

DELIVERY_FLOW = (
    DeliveryStatus.PENDING,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.DELIVERED,
    DeliveryStatus.RECEIVED,
)

# A shipment only moves forward; staying in place is always allowed.
ALLOWED_TRANSITIONS = {
    status.value: {later.value for later in DELIVERY_FLOW[index:]}
    for index, status in enumerate(DELIVERY_FLOW)
}

PROOF_REQUIRED_STATUSES = {DeliveryStatus.RECEIVED.value}


def suggest_next_status(current):
    """Status an operator most likely wants when opening a booking for a delivery update."""
    if current not in ALLOWED_TRANSITIONS:
        return DeliveryStatus.IN_TRANSIT.value
    index = [status.value for status in DELIVERY_FLOW].index(current)
    return DELIVERY_FLOW[min(index + 1, len(DELIVERY_FLOW) - 1)].value


def can_transition(current, target):
    if target not in ALLOWED_TRANSITIONS:
        return False
    current = current or DeliveryStatus.PENDING.value
    return target in ALLOWED_TRANSITIONS.get(current, set())


def requires_proof(target):
    return target in PROOF_REQUIRED_STATUSES


def transition_errors(current, target, has_proof):
    """Validation errors for moving a booking from ``current`` to ``target``, keyed by delivery field."""
    current = current or DeliveryStatus.PENDING.value
    if not can_transition(current, target):
        return {"status": f"Delivery status cannot move from '{current}' to '{target}'."}
    if requires_proof(target) and target != current and not has_proof:
        return {"proof_image": f"A proof image is required to mark delivery as '{target}'."}
    return {}
