"""Repositories for data access."""
from benefit_outreach.db.repositories.base import BaseRepository, as_uuid
from benefit_outreach.db.repositories.outreach import (
    CampaignRepository,
    MessageEventRepository,
    OutreachLogRepository,
    SequenceStateRepository,
)
from benefit_outreach.db.repositories.patients import (
    AppointmentRepository,
    InsuranceRepository,
    PatientRepository,
    PreferencesRepository,
)
from benefit_outreach.db.repositories.practices import PracticeRepository

__all__ = [
    "BaseRepository",
    "as_uuid",
    "PracticeRepository",
    "PatientRepository",
    "InsuranceRepository",
    "AppointmentRepository",
    "PreferencesRepository",
    "CampaignRepository",
    "OutreachLogRepository",
    "MessageEventRepository",
    "SequenceStateRepository",
]
