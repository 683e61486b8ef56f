"""Central role / permission definitions.

ROLE_CAPABILITIES is the single source every role-keyed consumer reads from:
default permission sets, navigation visibility and the labels shown on the
user management screens. Extend it here rather than adding role switches elsewhere.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Tuple

WILDCARD = '*'

ROLE_ADMIN = 'admin'
ROLE_DISPATCHER = 'dispatcher'
ROLE_AGENT = 'agent'
ROLE_WAREHOUSE = 'warehouse'
ROLE_ACCOUNTING = 'accounting'
ROLE_CUSTOMER = 'customer'
ALL_ROLES = (ROLE_ADMIN, ROLE_DISPATCHER, ROLE_AGENT, ROLE_WAREHOUSE, ROLE_ACCOUNTING, ROLE_CUSTOMER)

ACTIONS = ('create', 'read', 'update', 'delete', 'export')

# resource -> [(action, display name, description)]
PERMISSION_CATALOG: Dict[str, List[Tuple[str, str, str]]] = {
    'orders': [
        ('create', 'Create Orders', 'Create new delivery orders'),
        ('read', 'View Orders', 'View order details and lists'),
        ('update', 'Update Orders', 'Modify existing orders'),
        ('delete', 'Delete Orders', 'Remove orders from system'),
        ('export', 'Export Orders', 'Export order data'),
    ],
    'deliveries': [
        ('create', 'Assign Deliveries', 'Assign deliveries to agents'),
        ('read', 'View Deliveries', 'View delivery information'),
        ('update', 'Update Deliveries', 'Update delivery status'),
    ],
    'inventory': [
        ('create', 'Add Inventory', 'Add new inventory items'),
        ('read', 'View Inventory', 'View inventory levels'),
        ('update', 'Update Inventory', 'Modify inventory quantities'),
        ('delete', 'Remove Inventory', 'Remove inventory items'),
    ],
    'warehouses': [
        ('create', 'Create Warehouses', 'Add new warehouse locations'),
        ('read', 'View Warehouses', 'View warehouse information'),
        ('update', 'Update Warehouses', 'Modify warehouse details'),
        ('delete', 'Delete Warehouses', 'Remove warehouses'),
    ],
    'vehicles': [
        ('create', 'Add Vehicles', 'Add vehicles to fleet'),
        ('read', 'View Vehicles', 'View fleet information'),
        ('update', 'Update Vehicles', 'Modify vehicle details'),
        ('delete', 'Remove Vehicles', 'Remove vehicles from fleet'),
    ],
    'customers': [
        ('create', 'Add Customers', 'Add new customers'),
        ('read', 'View Customers', 'View customer information'),
        ('update', 'Update Customers', 'Modify customer details'),
        ('delete', 'Delete Customers', 'Remove customers'),
    ],
    'invoices': [
        ('create', 'Create Invoices', 'Generate invoices'),
        ('read', 'View Invoices', 'View invoice details'),
        ('update', 'Update Invoices', 'Modify invoices'),
        ('delete', 'Delete Invoices', 'Remove invoices'),
    ],
    'returns': [
        ('create', 'Create Returns', 'Process return requests'),
        ('read', 'View Returns', 'View return information'),
        ('update', 'Update Returns', 'Modify return status'),
        ('delete', 'Delete Returns', 'Remove return requests'),
    ],
    'analytics': [
        ('read', 'View Analytics', 'Access analytics dashboard'),
    ],
    'reports': [
        ('export', 'Export Reports', 'Export system reports'),
    ],
    'users': [
        ('create', 'Create Users', 'Add new users to system'),
        ('read', 'View Users', 'View user information'),
        ('update', 'Update Users', 'Modify user details'),
        ('delete', 'Delete Users', 'Remove users from system'),
    ],
    'settings': [
        ('read', 'View Settings', 'View system settings'),
        ('update', 'Update Settings', 'Modify system settings'),
    ],
    'profile': [
        ('read', 'Profile Read', 'View own profile'),
        ('update', 'Profile Update', 'Modify own profile'),
    ],
}

RESOURCES = tuple(PERMISSION_CATALOG.keys())


@dataclass(frozen=True)
class RoleProfile:
    title: str
    description: str
    color: str
    defaults: Tuple[Tuple[str, str], ...]


ROLE_CAPABILITIES: Dict[str, RoleProfile] = {
    ROLE_ADMIN: RoleProfile(
        'Administrator', 'Full system access and user management', 'red',
        ((WILDCARD, WILDCARD),),
    ),
    ROLE_DISPATCHER: RoleProfile(
        'Dispatcher', 'Order and delivery coordination', 'blue',
        (('orders', 'read'), ('orders', 'update'), ('deliveries', 'read'),
         ('deliveries', 'update'), ('vehicles', 'read'), ('analytics', 'read')),
    ),
    ROLE_AGENT: RoleProfile(
        'Delivery Agent', 'Field delivery operations', 'green',
        (('deliveries', 'read'), ('deliveries', 'update'), ('orders', 'read')),
    ),
    ROLE_WAREHOUSE: RoleProfile(
        'Warehouse Staff', 'Inventory and warehouse management', 'yellow',
        (('inventory', 'read'), ('inventory', 'update'), ('warehouses', 'read'),
         ('orders', 'read'), ('returns', 'read'), ('returns', 'update')),
    ),
    ROLE_ACCOUNTING: RoleProfile(
        'Accounting', 'Financial operations and reporting', 'purple',
        (('invoices', 'read'), ('invoices', 'create'), ('invoices', 'update'),
         ('customers', 'read'), ('reports', 'export'), ('analytics', 'read')),
    ),
    ROLE_CUSTOMER: RoleProfile(
        'Customer', 'Self-service order tracking', 'gray',
        (('profile', 'read'), ('profile', 'update')),
    ),
}

# (section, resource gating it); None means always visible
NAVIGATION_SECTIONS: List[Tuple[str, str | None]] = [
    ('dashboard', None),
    ('orders', 'orders'),
    ('deliveries', 'deliveries'),
    ('transport', 'vehicles'),
    ('warehouse', 'inventory'),
    ('returns', 'returns'),
    ('accounting', 'invoices'),
    ('analytics', 'analytics'),
    ('users', 'users'),
    ('settings', 'settings'),
]


def permission_name(resource: str, action: str) -> str:
    if resource == WILDCARD:
        return 'All Access'
    for act, name, _ in PERMISSION_CATALOG.get(resource, []):
        if act == action:
            return name
    return f"{resource.title()} {action.title()}"
