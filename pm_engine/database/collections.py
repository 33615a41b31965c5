# Collection Names
COLLECTIONS = {
    'warehouses': 'warehouses',
    'profiles': 'profiles',
    'equipment': 'equipment',
    'pm_templates': 'pm_templates',
    'work_orders': 'work_orders',
    'notifications': 'notifications',
    'escalation_rules': 'escalation_rules',
    'escalation_log': 'escalation_log',
}
