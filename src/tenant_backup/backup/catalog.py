"""Default table catalog for the business datastore.

Tables are scoped to ``businesses`` either directly (``businessId``) or
through a parent table that is itself scoped (``productVariants`` through
``businessProducts``).  Users and what they own are narrowed to the
tenant's members in tenant backups.  Other tables without a scope are
global reference data and are captured whole.  Device-specific tables are
only captured on request.

Declaration order only matters among tables with no dependency between
them; ``DEFAULT_SCHEMA.restore_order()`` computes the rest.
"""

from typing import Any

from tenant_backup.backup.models import BackupSchema, ForeignKey, TableDef

SCHEMA_VERSION = "2025.12"

DEVICE_SPECIFIC_TABLES = [
    "syncNodes",
    "syncSessions",
    "fullSyncSessions",
    "syncMetrics",
    "nodeStates",
    "syncEvents",
    "syncConfigurations",
    "offlineQueue",
    "deviceRegistry",
    "deviceConnectionHistory",
    "networkPartitions",
]


def _via(name: str, parent: str, field: str, **kwargs: Any) -> TableDef:
    """Table scoped through ``field`` -> ``parent``."""
    return TableDef(name=name, scope=ForeignKey(table=parent, field=field), **kwargs)


def _business(name: str, field: str = "businessId", **kwargs: Any) -> TableDef:
    """Table scoped directly to ``businesses``."""
    return _via(name, "businesses", field, **kwargs)


DEFAULT_TABLES: list[TableDef] = [
    # System and reference data
    TableDef(name="systemSettings"),
    TableDef(name="emojiLookup", key=["emoji", "description"]),
    TableDef(name="jobTitles", key=["title"]),
    TableDef(name="compensationTypes", key=["name"]),
    TableDef(name="benefitTypes", key=["name"]),
    TableDef(name="idFormatTemplates"),
    TableDef(name="driverLicenseTemplates"),
    TableDef(name="projectTypes", key=["name"]),
    TableDef(name="inventoryDomains", key=["name"]),
    TableDef(name="expenseDomains", key=["name"]),
    TableDef(name="expenseCategories", depends_on=["expenseDomains"]),
    TableDef(name="expenseSubcategories", depends_on=["expenseCategories"]),
    TableDef(name="tokenConfigurations"),
    TableDef(name="persons"),

    # Users and authentication; tenant backups keep members and what they own
    TableDef(name="users", member_of=ForeignKey(table="businessMemberships", field="userId")),
    TableDef(name="accounts", owned_by=ForeignKey(table="users", field="userId")),
    TableDef(name="permissions", key=["name"]),
    TableDef(
        name="userPermissions",
        owned_by=ForeignKey(table="users", field="userId"),
        depends_on=["permissions"],
    ),
    TableDef(name="permissionTemplates", depends_on=["users"]),

    # Businesses
    TableDef(name="businesses"),
    _business("businessMemberships", key=["userId", "businessId"], depends_on=["users"]),
    _business("businessAccounts"),
    _business("businessLocations"),
    _business("businessBrands"),
    _business("businessCategories", include_unscoped=True, depends_on=["inventoryDomains"]),
    _business("businessSuppliers", include_unscoped=True),
    _via("inventorySubcategories", "businessCategories", "categoryId"),

    # Employees and HR
    _business(
        "employees",
        field="primaryBusinessId",
        depends_on=["jobTitles", "compensationTypes", "users"],
    ),
    _business("employeeContracts", field="primaryBusinessId", depends_on=["employees", "jobTitles"]),
    _business("employeeBusinessAssignments", key=["employeeId", "businessId"], depends_on=["employees"]),
    _via("employeeBenefits", "employees", "employeeId", depends_on=["benefitTypes"]),
    _via("employeeAllowances", "employees", "employeeId"),
    _via("employeeBonuses", "employees", "employeeId"),
    _via("employeeDeductions", "employees", "employeeId"),
    _via("employeeLoans", "employees", "employeeId"),
    _via("employeeSalaryIncreases", "employees", "employeeId"),
    _via("employeeLeaveRequests", "employees", "employeeId"),
    _via("employeeLeaveBalance", "employees", "employeeId"),
    _via("employeeAttendance", "employees", "employeeId"),
    _via("employeeTimeTracking", "employees", "employeeId"),
    _via("disciplinaryActions", "employees", "employeeId"),
    _via("employeeDeductionPayments", "employeeDeductions", "deductionId"),
    _via("employeeLoanPayments", "employeeLoans", "loanId"),
    _via("contractBenefits", "employeeContracts", "contractId", depends_on=["benefitTypes"]),
    _via("contractRenewals", "employeeContracts", "originalContractId"),

    # Products and inventory
    _business(
        "businessProducts",
        depends_on=["businessCategories", "businessBrands", "businessSuppliers"],
    ),
    _via("productVariants", "businessProducts", "productId"),
    _via("productImages", "businessProducts", "productId"),
    _via("productAttributes", "businessProducts", "productId"),
    _via("productBarcodes", "productVariants", "variantId"),
    _via("productPriceChanges", "productVariants", "variantId"),
    _business("businessStockMovements", depends_on=["businessProducts", "productVariants"]),
    _via("supplierProducts", "businessSuppliers", "supplierId", depends_on=["businessProducts"]),
    _business("skuSequences", key=["businessId", "prefix"]),

    # Customers and orders
    _business("businessCustomers"),
    _business("businessOrders", depends_on=["businessCustomers", "employees"]),
    _via("businessOrderItems", "businessOrders", "orderId", depends_on=["productVariants"]),
    _business("businessTransactions", depends_on=["businessOrders"]),
    _via("customerLaybys", "businessCustomers", "customerId"),
    _via("customerLaybyPayments", "customerLaybys", "laybyId"),
    _business("receiptSequences", key=["businessId", "date"]),

    # Expense accounts
    _business("expenseAccounts", key=["accountNumber"], include_unscoped=True),
    _via("expenseAccountDeposits", "expenseAccounts", "expenseAccountId"),
    _via(
        "expenseAccountPayments",
        "expenseAccounts",
        "expenseAccountId",
        depends_on=["expenseCategories", "expenseSubcategories"],
    ),

    # Payroll
    _business("payrollAccounts", key=["accountNumber"], include_unscoped=True),
    _via("payrollAccountDeposits", "payrollAccounts", "payrollAccountId"),
    _via("payrollAccountPayments", "payrollAccounts", "payrollAccountId", depends_on=["employees"]),
    _business("payrollPeriods"),
    _via("payrollEntries", "payrollPeriods", "payrollPeriodId", depends_on=["employees"]),
    _via("payrollEntryBenefits", "payrollEntries", "payrollEntryId", depends_on=["benefitTypes"]),
    _via("payrollExports", "payrollPeriods", "payrollPeriodId"),
    _via("payrollAdjustments", "payrollEntries", "payrollEntryId"),

    # Projects
    _business("projects", depends_on=["projectTypes"]),
    _via("projectStages", "projects", "projectId"),
    _via("projectContractors", "projects", "projectId", depends_on=["persons"]),
    _via(
        "projectTransactions",
        "projects",
        "projectId",
        depends_on=["projectStages", "projectContractors"],
    ),

    # Vehicles
    _business("vehicles", include_unscoped=True),
    _business("vehicleDrivers"),
    _via("vehicleLicenses", "vehicles", "vehicleId"),
    _via("driverAuthorizations", "vehicleDrivers", "driverId", depends_on=["vehicles"]),
    _via("vehicleMaintenanceRecords", "vehicles", "vehicleId"),
    _via("vehicleTrips", "vehicles", "vehicleId", depends_on=["vehicleDrivers", "driverAuthorizations"]),
    _via("vehicleExpenses", "vehicles", "vehicleId", depends_on=["vehicleTrips"]),
    _business("vehicleReimbursements", depends_on=["vehicles", "users"]),

    # WiFi tokens
    _business("wifiTokens", depends_on=["tokenConfigurations"]),
    _via("wifiTokenDevices", "wifiTokens", "wifiTokenId"),
    _business("wifiTokenSales", depends_on=["wifiTokens"]),
    _business("businessTokenMenuItems", depends_on=["tokenConfigurations"]),

    # Menu
    _business("menuItems"),
    _business("menuCombos"),
    _via("menuComboItems", "menuCombos", "comboId", depends_on=["menuItems"]),
    _business("menuPromotions"),

    # Printing
    _business("barcodeTemplates"),
    _business("printJobs", depends_on=["barcodeTemplates"]),

    # Inter-business loans
    _business("interBusinessLoans", field="lenderBusinessId"),
    _via("loanTransactions", "interBusinessLoans", "loanId"),

    # Audit trail (opt-in, newest first, capped)
    TableDef(name="auditLogs", audit=True, order_by="timestamp", depends_on=["users"]),

    # Sync and device state; restored only onto the host that produced it
    *(
        TableDef(name=name, device_specific=True)
        for name in DEVICE_SPECIFIC_TABLES
    ),
]

DEFAULT_SCHEMA = BackupSchema(
    tables=DEFAULT_TABLES,
    tenant_table="businesses",
    version=SCHEMA_VERSION,
)
