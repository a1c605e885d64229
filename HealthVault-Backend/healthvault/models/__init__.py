from healthvault.models.user import User, RoleEnum
from healthvault.models.record import MedicalRecord, RecordCategory
from healthvault.models.access_control import AccessRequest, AccessStatus, EscrowedKey
from healthvault.models.access_log import AccessLog
