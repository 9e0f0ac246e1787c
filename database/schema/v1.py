"""Schema v1 - Initial voucher schema.

This version includes tables for:
- Vouchers issued against listings
- Purchases of vouchers and their redemption state
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'vouchers',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'listing_id', 'type': 'INT8', 'nullable': False},
                {'name': 'user_id', 'type': 'INT8', 'nullable': False},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'price', 'type': 'DECIMAL(12, 2)', 'nullable': False},
                {'name': 'photo_url', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_vouchers_user', 'columns': ['user_id', 'created_at']},
                {'name': 'idx_vouchers_listing', 'columns': ['listing_id']}
            ]
        },
        {
            'name': 'purchases',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'voucher_id', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'buyer_id', 'type': 'INT8', 'nullable': False},
                {'name': 'redemption_token', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'"},
                {'name': 'redeemed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['voucher_id'], 'references': 'vouchers(id)'}
            ],
            'indexes': [
                {'name': 'idx_purchases_buyer', 'columns': ['buyer_id']}
            ]
        }
    ]
}
