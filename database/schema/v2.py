"""Schema v2 - Constrain purchase status and order buyer listings.

This version:
- Restricts purchases.status to 'active' and 'redeemed'
- Requires redeemed_at to be set exactly when a purchase is redeemed
- Replaces the buyer index with one covering the newest-first listing order
"""

schema = {
    'version': 2,
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
                {
                    'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'",
                    'check': "status IN ('active', 'redeemed')"
                },
                {
                    'name': 'redeemed_at', 'type': 'TIMESTAMPTZ',
                    'check': "(status = 'redeemed') = (redeemed_at IS NOT NULL)"
                },
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['voucher_id'], 'references': 'vouchers(id)'}
            ],
            'indexes': [
                {'name': 'idx_purchases_buyer_created', 'columns': ['buyer_id', 'created_at DESC']}
            ]
        }
    ],
    'migrations': [
        '''
        ALTER TABLE purchases
        ADD CONSTRAINT ck_purchases_status CHECK (status IN ('active', 'redeemed'))
        ''',
        '''
        ALTER TABLE purchases
        ADD CONSTRAINT ck_purchases_redeemed_at
        CHECK ((status = 'redeemed') = (redeemed_at IS NOT NULL))
        ''',
        'DROP INDEX IF EXISTS idx_purchases_buyer',
        '''
        CREATE INDEX IF NOT EXISTS idx_purchases_buyer_created
        ON purchases(buyer_id, created_at DESC)
        '''
    ]
}
