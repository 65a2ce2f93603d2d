from .user import User
from .complaint import Complaint, ComplaintStatusHistory
