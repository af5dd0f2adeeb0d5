"""
E-Learning Application Models Registry

This module serves as the central models registry for the E-Learning application.
It imports and exposes all models from the logical submodules (courses,
enrollments, payments) to ensure they are properly registered with Django's
ORM system.

Architecture:
- courses/: Purchasable courses and their seat counters
- enrollments/: Student enrollments with a payment-status projection
- payments/: Payment attempts and the confirmation event log

Author: DSP Development Team
Version: 1.0.0
"""

# Import all course-related models for registration with Django ORM
from .courses.models import *  # noqa: F401,F403

# Import all enrollment-related models for registration with Django ORM
from .enrollments.models import *  # noqa: F401,F403

# Import all payment-related models for registration with Django ORM
from .payments.models import *  # noqa: F401,F403
