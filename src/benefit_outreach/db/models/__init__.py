"""ORM models."""
from benefit_outreach.db.models.enums import (
    AppointmentStatus,
    Channel,
    DelayType,
    EmailProviderChoice,
    LogStatus,
    MessageType,
    MessagingProvider,
    SequenceStatus,
    SMSProviderChoice,
    StopReason,
    SubscriptionStatus,
    TriggerType,
)
from benefit_outreach.db.models.practice import PracticeModel
from benefit_outreach.db.models.patient import (
    AppointmentModel,
    BenefitsSnapshotModel,
    PatientInsuranceModel,
    PatientModel,
    PatientPreferencesModel,
)
from benefit_outreach.db.models.outreach import (
    CampaignStepModel,
    MessageEventModel,
    OutreachCampaignModel,
    OutreachLogModel,
    PatientSequenceStateModel,
)

__all__ = [
    # Vocabularies
    "AppointmentStatus",
    "Channel",
    "DelayType",
    "EmailProviderChoice",
    "LogStatus",
    "MessageType",
    "MessagingProvider",
    "SequenceStatus",
    "SMSProviderChoice",
    "StopReason",
    "SubscriptionStatus",
    "TriggerType",
    # Tenant
    "PracticeModel",
    # Patients
    "PatientModel",
    "PatientInsuranceModel",
    "AppointmentModel",
    "PatientPreferencesModel",
    "BenefitsSnapshotModel",
    # Outreach
    "OutreachCampaignModel",
    "CampaignStepModel",
    "OutreachLogModel",
    "MessageEventModel",
    "PatientSequenceStateModel",
]
