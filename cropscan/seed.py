"""
Seed a default admin, a demo farmer and the disease catalog.

Run with `python -m cropscan.seed`. Safe to run repeatedly: users are only
created when missing and catalog rows are upserted by name.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import auth
from .database import SessionLocal, init_db
from .models import AdminProfile, Disease, FarmerProfile, Role, Severity, User

logger = logging.getLogger(__name__)

DEFAULT_ADMIN = {
    "email": "admin@crophealth.com",
    "password": "admin123456",
    "name": "System Admin",
    "phone": "01700000000",
}
DEMO_FARMER = {
    "email": "farmer@example.com",
    "password": "farmer123456",
    "name": "Demo Farmer",
    "phone": "01800000000",
    "address": "Chittagong, Bangladesh",
}

DISEASES: List[Dict[str, Any]] = [
    {
        "name": "Healthy Crop",
        "scientific_name": None,
        "description": "Plant appears healthy with no disease symptoms detected",
        "symptoms": ["Green healthy leaves", "Normal growth pattern"],
        "causes": [],
        "treatment": "Continue current farming practices",
        "prevention": "Regular monitoring, proper spacing, balanced fertilization",
        "severity": Severity.LOW,
        "crops": ["All crops"],
    },
    {
        "name": "Leaf Spot Disease",
        "scientific_name": "Cercospora spp.",
        "description": "Fungal or bacterial disease causing circular spots on leaves",
        "symptoms": ["Small circular brown spots", "Yellow halos around spots"],
        "causes": ["High humidity", "Poor air circulation", "Overhead watering"],
        "treatment": "Remove affected leaves. Apply copper-based fungicide.",
        "prevention": "Avoid overhead watering, ensure proper plant spacing",
        "severity": Severity.MEDIUM,
        "crops": ["Apple", "Corn", "Potato", "Tomato"],
    },
    {
        "name": "Blight Disease",
        "scientific_name": "Phytophthora infestans",
        "description": "Serious fungal disease causing rapid browning of plant tissues",
        "symptoms": ["Rapid browning of leaves", "Water-soaked lesions"],
        "causes": ["Cool wet weather", "High humidity", "Poor drainage"],
        "treatment": "Remove infected plants. Apply systemic fungicide.",
        "prevention": "Use resistant varieties, ensure good drainage",
        "severity": Severity.HIGH,
        "crops": ["Potato", "Tomato"],
    },
    {
        "name": "Rust Disease",
        "scientific_name": "Puccinia spp.",
        "description": "Fungal disease with orange/brown pustules on leaves",
        "symptoms": ["Orange/brown pustules", "Yellow spots that turn rusty"],
        "causes": ["Moderate temperatures", "High humidity", "Dense canopy"],
        "treatment": "Apply systemic fungicide. Remove infected leaves.",
        "prevention": "Plant resistant varieties, proper spacing",
        "severity": Severity.MEDIUM,
        "crops": ["Wheat", "Corn", "Apple"],
    },
    {
        "name": "Bacterial Spot",
        "scientific_name": "Xanthomonas campestris",
        "description": "Bacterial infection causing dark spots on leaves and fruits",
        "symptoms": ["Small dark brown spots", "Yellow halos", "Fruit lesions"],
        "causes": ["Warm humid weather", "Water splash", "Contaminated tools"],
        "treatment": "Apply copper-based bactericide. Improve sanitation.",
        "prevention": "Use clean tools, avoid water splash, crop rotation",
        "severity": Severity.HIGH,
        "crops": ["Tomato", "Pepper", "Peach"],
    },
    {
        "name": "Mosaic Virus",
        "scientific_name": "Tobacco Mosaic Virus",
        "description": "Viral infection causing mottled yellow/green patterns",
        "symptoms": ["Mottled leaf patterns", "Stunted growth", "Distorted leaves"],
        "causes": ["Infected seeds", "Insect vectors", "Contaminated tools"],
        "treatment": "Remove infected plants. Control insect vectors.",
        "prevention": "Use virus-free seeds, control insects, sanitize tools",
        "severity": Severity.HIGH,
        "crops": ["Tomato", "Pepper", "Cucumber"],
    },
]


def _ensure_user(db: Session, data: Dict[str, Any], role: Role, profile) -> User:
    user = db.scalar(select(User).where(User.email == data["email"]))
    if user is not None:
        return user
    fields = {k: v for k, v in data.items() if k != "password"}
    user = User(password=auth.hash_password(data["password"]), role=role, **fields)
    if role == Role.ADMIN:
        user.admin_profile = profile
    else:
        user.farmer_profile = profile
    db.add(user)
    logger.info("Created %s %s", role.value.lower(), data["email"])
    return user


def seed_users(db: Session) -> None:
    _ensure_user(db, DEFAULT_ADMIN, Role.ADMIN, AdminProfile(
        department="Agriculture Technology",
        designation="System Administrator",
    ))
    _ensure_user(db, DEMO_FARMER, Role.FARMER, FarmerProfile(
        crop_types=["rice", "wheat", "potato"],
        farm_size=5.5,
        farming_experience=10,
        farm_location="Chittagong District",
        soil_type="loamy",
        irrigation_type="drip",
    ))
    db.commit()


def seed_diseases(db: Session) -> int:
    existing = {d.name: d for d in db.scalars(select(Disease)).all()}
    for data in DISEASES:
        disease = existing.get(data["name"])
        if disease is None:
            db.add(Disease(is_active=True, **data))
        else:
            for key, value in data.items():
                setattr(disease, key, value)
    db.commit()
    logger.info("Disease catalog holds %d seeded entries", len(DISEASES))
    return len(DISEASES)


def seed(db: Session) -> None:
    seed_users(db)
    seed_diseases(db)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    init_db()
    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
