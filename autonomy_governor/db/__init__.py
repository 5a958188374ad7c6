"""
Database Package
================

Exports key database components.
"""

from autonomy_governor.db.models import (
    Base,
    TenantModel, TaskModel, AutonomyTransitionModel,
    EscalationRuleModel,
    ShadowSessionModel, CapturedInteractionModel, ShadowLearningModel,
    GuidelineUpdateModel,
)
from autonomy_governor.db.connection import Database, init_db
from autonomy_governor.db.stores import (
    SqlTenantStore, SqlTransitionStore, SqlTaskStore,
    SqlEscalationRuleStore, SqlShadowStore, SqlGuidelinesStore,
)
