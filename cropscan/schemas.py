import re
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# Bangladesh mobile numbers: 01XXXXXXXXX with optional +880 / 880 prefix
PHONE_RE = re.compile(r"^(\+8801|8801|01)[3-9]\d{8}$")

SoilType = Literal["clay", "sandy", "loamy", "silt", "peat", "chalk"]
IrrigationType = Literal["drip", "sprinkler", "flood", "manual", "rainfed"]
RoleName = Literal["ADMIN", "FARMER"]
SeverityName = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
SortOrder = Literal["asc", "desc"]

def _check_email(v: str) -> str:
    v = v.strip()
    if not EMAIL_RE.match(v):
        raise ValueError("Invalid email format")
    return v.lower()


def _check_phone(v: Optional[str]) -> Optional[str]:
    if v is not None and not PHONE_RE.match(v):
        raise ValueError("Invalid Bangladesh phone number")
    return v


def _check_url(v: Optional[str]) -> Optional[str]:
    if v is not None and not re.match(r"^https?://\S+$", v):
        raise ValueError("Invalid photo URL")
    return v


# partial updates may omit a field but not clear a required column
def _not_null(v):
    if v is None:
        raise ValueError("Field cannot be null")
    return v


class UserFields(BaseModel):
    email: str
    password: str = Field(..., min_length=6, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = None
    address: Optional[str] = None
    photo: Optional[str] = None

    normalize_email = field_validator("email")(_check_email)
    check_phone = field_validator("phone")(_check_phone)
    check_photo = field_validator("photo")(_check_url)


class FarmerProfileIn(BaseModel):
    crop_types: List[str] = Field(..., min_length=1)
    farm_size: Optional[float] = Field(None, gt=0)
    farming_experience: Optional[int] = Field(None, ge=0, le=100)
    farm_location: Optional[str] = None
    soil_type: Optional[SoilType] = None
    irrigation_type: Optional[IrrigationType] = None


class FarmerProfileUpdate(BaseModel):
    crop_types: Optional[List[str]] = Field(None, min_length=1)
    farm_size: Optional[float] = Field(None, gt=0)
    farming_experience: Optional[int] = Field(None, ge=0, le=100)
    farm_location: Optional[str] = None
    soil_type: Optional[SoilType] = None
    irrigation_type: Optional[IrrigationType] = None

    reject_null = field_validator("crop_types")(_not_null)


class AdminProfileIn(BaseModel):
    department: Optional[str] = None
    designation: Optional[str] = None


class RegisterFarmerRequest(UserFields):
    farmer_profile: FarmerProfileIn


class RegisterAdminRequest(UserFields):
    admin_profile: AdminProfileIn = Field(default_factory=AdminProfileIn)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    normalize_email = field_validator("email")(_check_email)


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = None
    address: Optional[str] = None
    photo: Optional[str] = None

    reject_null = field_validator("name")(_not_null)
    check_phone = field_validator("phone")(_check_phone)
    check_photo = field_validator("photo")(_check_url)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=50)
    confirm_password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("New password and confirm password do not match")
        return self


class UserStatusRequest(BaseModel):
    is_active: bool


class ImageIdsRequest(BaseModel):
    image_ids: List[str] = Field(..., min_length=1, max_length=50)

    @field_validator("image_ids")
    @classmethod
    def non_empty_ids(cls, v: List[str]) -> List[str]:
        if any(not i.strip() for i in v):
            raise ValueError("Image ID cannot be empty")
        return v


class BatchPredictRequest(ImageIdsRequest):
    image_ids: List[str] = Field(..., min_length=1, max_length=10)


class DiseaseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    scientific_name: Optional[str] = None
    description: Optional[str] = None
    symptoms: List[str] = Field(default_factory=list)
    causes: List[str] = Field(default_factory=list)
    treatment: Optional[str] = None
    prevention: Optional[str] = None
    severity: SeverityName = "MEDIUM"
    crops: List[str] = Field(default_factory=list)
    is_active: bool = True


class DiseaseUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    scientific_name: Optional[str] = None
    description: Optional[str] = None
    symptoms: Optional[List[str]] = None
    causes: Optional[List[str]] = None
    treatment: Optional[str] = None
    prevention: Optional[str] = None
    severity: Optional[SeverityName] = None
    crops: Optional[List[str]] = None
    is_active: Optional[bool] = None

    reject_null = field_validator("name", "symptoms", "causes", "severity", "crops", "is_active")(_not_null)
