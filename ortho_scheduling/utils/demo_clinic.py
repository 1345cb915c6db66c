"""
Demo Clinic Helper Utilities

Seeds an in-memory store with a small demo clinic so the service is usable
without a database: one orthodontist on a Monday-Friday week, one patient
and the common orthodontic visit types.
"""
import logging

from ..models.scheduling import ProviderSchedule

logger = logging.getLogger(__name__)

DEMO_CLINIC_ID = "demo-clinic"
DEMO_PROVIDER_ID = "dr-demo"
DEMO_PATIENT_ID = "demo-patient"

# Visit type id -> (name, default minutes)
DEMO_APPOINTMENT_TYPES = {
    "consult": ("New patient consultation", 60),
    "bonding": ("Bracket bonding", 90),
    "adjustment": ("Wire adjustment", 30),
    "repair": ("Bracket repair", 30),
    "debond": ("Debond and retainers", 60),
}


def seed_demo_clinic(store) -> str:
    """
    Register the demo provider, patient and appointment types in a store.

    Args:
        store: InMemorySchedulingStore to seed

    Returns:
        Demo clinic ID
    """
    store.add_provider(DEMO_PROVIDER_ID, name="Dr. Demo")
    store.add_patient(DEMO_PATIENT_ID, name="Demo Patient")
    for type_id, (name, minutes) in DEMO_APPOINTMENT_TYPES.items():
        store.add_appointment_type(type_id, name=name, duration=minutes)

    for day_of_week in range(1, 6):
        store.add_schedule(ProviderSchedule(
            provider_id=DEMO_PROVIDER_ID,
            day_of_week=day_of_week,
            start_time="08:00",
            end_time="17:00",
            lunch_start_time="12:00",
            lunch_end_time="13:00",
        ))

    logger.info(f"Seeded demo clinic {DEMO_CLINIC_ID}: provider {DEMO_PROVIDER_ID}, patient {DEMO_PATIENT_ID}")
    return DEMO_CLINIC_ID
