PROPERTY_CONSULTANT = "property_consultant"
SALES_MANAGER = "sales_manager"
FINANCIAL_MANAGER = "financial_manager"
FINANCIAL_ADMIN = "financial_admin"
CONTRACT_PERSON = "contract_person"
CONTRACT_MANAGER = "contract_manager"
CEO = "ceo"
CHAIRMAN = "chairman"
VICE_CHAIRMAN = "vice_chairman"
TOP_MANAGEMENT = "top_management"
ADMIN = "admin"
SUPERADMIN = "superadmin"
SYSTEM = "system"

DEFAULT_ROLES = [
    (PROPERTY_CONSULTANT, "Builds offers and payment plans for customers"),
    (SALES_MANAGER, "Reviews consultant deals and first override level"),
    (FINANCIAL_MANAGER, "Approves unit blocks, reservations and second override level"),
    (FINANCIAL_ADMIN, "Prepares reservation forms and records down payments"),
    (CONTRACT_PERSON, "Drafts and executes contracts"),
    (CONTRACT_MANAGER, "First contract approval level"),
    (CEO, "Top management"),
    (CHAIRMAN, "Top management"),
    (VICE_CHAIRMAN, "Top management"),
    (TOP_MANAGEMENT, "Top management"),
    (ADMIN, "System administrator"),
    (SUPERADMIN, "System administrator"),
]

TOP_MANAGEMENT_ROLES = frozenset({CEO, CHAIRMAN, VICE_CHAIRMAN, TOP_MANAGEMENT})
ADMIN_ROLES = frozenset({ADMIN, SUPERADMIN})
ALL_ROLES = frozenset(name for name, _ in DEFAULT_ROLES) | {SYSTEM}

# Unit inventory states
UNIT_INVENTORY_DRAFT = "INVENTORY_DRAFT"
UNIT_AVAILABLE = "AVAILABLE"
UNIT_BLOCKED = "BLOCKED"
UNIT_RESERVED = "RESERVED"
UNIT_CONTRACTED = "CONTRACTED"
UNIT_ADVANCED_STATUSES = frozenset({UNIT_RESERVED, UNIT_CONTRACTED})

# Unit block states; approved and unblocking_requested blocks hold the unit.
BLOCK_ACTIVE_STATUSES = ("approved", "unblocking_requested")

DEAL_STATUSES = ("draft", "pending_approval", "approved", "rejected", "cancelled")
OVERRIDE_STATUSES = ("none", "requested", "sm_approved", "fm_approved", "tm_approved", "rejected")
RESERVATION_STATUSES = ("draft", "pending_approval", "approved", "rejected", "cancelled")
CONTRACT_STATUSES = ("draft", "pending_cm", "pending_tm", "approved", "rejected", "executed")

DOCUMENT_VERSION = 1
LANGUAGES = ("en", "ar")
