from __future__ import annotations


# Stripe webhook 事件 JSON Schema：只约束入账所需字段
STRIPE_EVENT_SCHEMA = {
    "type": "object",
    "required": ["id", "type", "data"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "type": {"type": "string", "minLength": 1},
        "data": {
            "type": "object",
            "required": ["object"],
            "properties": {
                "object": {
                    "type": "object",
                    "required": ["id"],
                    "properties": {
                        "id": {"type": "string"},
                        "client_reference_id": {"type": ["string", "null"]},
                        "payment_intent": {"type": ["string", "null"]},
                        "metadata": {
                            "type": ["object", "null"],
                            "additionalProperties": {"type": ["string", "null"]},
                        },
                    },
                },
            },
        },
    },
}
