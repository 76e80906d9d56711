"""
Default email rules shipped with the CRM
"""

DEFAULT_RULES = [
    {
        'name': 'Auto-Create Contact for New Senders',
        'description': 'Automatically create a contact for every incoming email from a new sender',
        'priority': 15,
        'enabled': True,
        'conditions': [
            {'type': 'direction', 'value': 'inbound', 'operator': 'equals'},
            {'type': 'from_contains', 'value': '@', 'operator': 'contains'},
            {'type': 'has_contact', 'value': 'false', 'operator': 'equals'},
        ],
        'actions': [
            {'type': 'create_contact', 'params': {'contact_type': 'Other'}},
        ],
    },
    {
        'name': 'Web General Enquiry - Create Lead',
        'description': 'Create a lead for Web General Enquiry emails',
        'priority': 11,
        'enabled': True,
        'conditions': [
            {'type': 'subject_contains', 'value': 'Web General Enquiry', 'operator': 'contains'},
        ],
        'actions': [
            {'type': 'create_lead', 'params': {'source': 'webform', 'status': 'new',
                                               'notes': 'Webform submission: Web General Enquiry'}},
        ],
    },
    {
        'name': 'Web Tiger Enquiry - Create Lead',
        'description': 'Create a lead for Web Tiger Enquiry emails',
        'priority': 11,
        'enabled': True,
        'conditions': [
            {'type': 'subject_contains', 'value': 'Web Tiger Enquiry', 'operator': 'contains'},
        ],
        'actions': [
            {'type': 'create_lead', 'params': {'source': 'webform', 'status': 'new',
                                               'notes': 'Webform submission: Web Tiger Enquiry'}},
        ],
    },
    {
        'name': 'Webform Detection',
        'description': 'Detect emails from webform submissions',
        'priority': 10,
        'enabled': True,
        'conditions': [
            {'type': 'subject_contains', 'value': 'New Web Enquiry', 'operator': 'contains'},
        ],
        'actions': [
            {'type': 'assign_category', 'params': {'category': 'Source – Webform'}},
            {'type': 'create_opportunity', 'params': {'source': 'webform', 'sub_source': 'Website Form',
                                                      'title': '{{subject}}'}},
            {'type': 'create_activity', 'params': {'type': 'email_received',
                                                   'description': 'Webform enquiry received'}},
        ],
    },
    {
        'name': 'Enquiry Template Detection',
        'description': 'Detect enquiry and quote templates',
        'priority': 9,
        'enabled': True,
        'conditions': [
            {'type': 'subject_matches', 'value': r'\[(Enquiry|Quote|Proposal)\]', 'operator': 'matches'},
        ],
        'actions': [
            {'type': 'assign_category', 'params': {'category': 'Stage – Proposal/Quote'}},
            {'type': 'update_opportunity_stage', 'params': {'stage_name': 'Qualified'}},
        ],
    },
    {
        'name': 'Booking Confirmation',
        'description': 'Detect booking confirmations and mark opportunities as won',
        'priority': 8,
        'enabled': True,
        'conditions': [
            {'type': 'subject_matches', 'value': r'(booking|reservation) confirmed', 'operator': 'matches'},
        ],
        'actions': [
            {'type': 'assign_category', 'params': {'category': 'Stage – Booking/Confirmation'}},
            {'type': 'mark_opportunity_won', 'params': {}},
            {'type': 'create_commission_snapshot', 'params': {}},
        ],
    },
    {
        'name': 'Social Media Follow-up',
        'description': 'Detect social media follow-up emails',
        'priority': 7,
        'enabled': True,
        'conditions': [
            {'type': 'subject_matches', 'value': r'Instagram|Facebook|LinkedIn|\[Social Enquiry\]',
             'operator': 'matches'},
        ],
        'actions': [
            {'type': 'assign_category', 'params': {'category': 'Source – Social'}},
            {'type': 'create_opportunity', 'params': {'source': 'social', 'sub_source': 'Social Media Follow-up'}},
        ],
    },
    {
        'name': 'Previous Client/Enquiry',
        'description': 'Detect emails from previous clients or enquiries',
        'priority': 6,
        'enabled': True,
        'conditions': [
            {'type': 'body_contains', 'value': r'previous booking|stayed before', 'operator': 'matches'},
        ],
        'actions': [
            {'type': 'assign_category', 'params': {'category': 'Source – Previous Client'}},
            {'type': 'create_opportunity', 'params': {'source': 'previous_client', 'sub_source': 'Returning Client'}},
        ],
    },
    {
        'name': 'Commission Evidence',
        'description': 'Detect payment and invoice emails for commission tracking',
        'priority': 5,
        'enabled': True,
        'conditions': [
            {'type': 'subject_matches', 'value': r'invoice|deposit received|final payment|payment received',
             'operator': 'matches'},
        ],
        'actions': [
            {'type': 'assign_category', 'params': {'category': 'Finance – Payment'}},
            {'type': 'link_to_opportunity', 'params': {}},
        ],
    },
    {
        'name': 'Flagged Follow-up',
        'description': 'Create follow-up activities from flagged emails',
        'priority': 4,
        'enabled': True,
        'conditions': [
            {'type': 'is_flagged', 'value': True, 'operator': 'equals'},
        ],
        'actions': [
            {'type': 'create_followup', 'params': {'type': 'email'}},
            {'type': 'assign_category', 'params': {'category': 'Stage – Follow-up'}},
        ],
    },
]

# Upserted by name even when the rules table is already populated
ENSURED_RULES = [
    'Auto-Create Contact for New Senders',
    'Web General Enquiry - Create Lead',
    'Web Tiger Enquiry - Create Lead',
]
