"""
                        Services Module

Business logic behind the API routes. Every function takes the
workspace (or a SessionContext) explicitly.

Services:
    - auth: Workspace accounts and signed sessions
    - catalog: Categories, menu items and tables
    - orders: Order lifecycle and board queries
    - reconciliation: Removing unavailable items from open orders
    - billing: Unpaid bills, final bills and payment marking
    - service_requests: Customer calls for staff
    - reporting: Dashboard stats and workspace exports
    - events: Change notification feed
    - storage: Image uploads
    - excel_manager: File-locked Excel exports
"""
