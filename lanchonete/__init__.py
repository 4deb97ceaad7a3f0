"""
                Lanchonete Ordering System

Backend for a snack bar / restaurant: menu, table service, order
lifecycle, payments, staff notifications and management reports.

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
