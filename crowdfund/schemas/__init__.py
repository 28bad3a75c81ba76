from .common import (
    CamelModel,
    PageParams,
    PaginationInfo,
    Page,
    ErrorResponse,
    MessageResponse,
    CountResponse,
)
from .campaign import (
    CreateCampaignRequest,
    UpdateCampaignRequest,
    CampaignResponse,
    ModerationRequest,
    BulkModerationRequest,
    BulkModerationResponse,
)
from .donation import (
    CreateDonationRequest,
    CreateDonationResponse,
    RefundRequest,
    DonationPublicResponse,
    DonationResponse,
    CampaignDonationStats,
    PlatformDonationStats,
    TopDonor,
    MonthlyTrend,
    DonationAnalytics,
)
from .user import (
    RegisterUserRequest,
    LoginRequest,
    UpdateUserRequest,
    ChangePasswordRequest,
    UserResponse,
    AvailabilityResponse,
    UserStats,
)
from .auth import TokenRegisterRequest, TokenLoginRequest, AuthResponse
from .payment import (
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    ConfirmPaymentIntentRequest,
    PaymentMethodInfo,
    PaymentMethodsResponse,
    FeeBreakdownResponse,
    WebhookAck,
)
from .upload import UploadResponse, DeleteUploadResponse, OptimizedUrlResponse
from .admin import (
    CampaignAnalytics,
    TopCampaign,
    CampaignTrendPoint,
    DailyCount,
    UserAnalytics,
    ActiveUser,
    FinancialAnalytics,
    AdminDashboard,
    AdminStats,
    MaintenanceReport,
    UserDetails,
)

__all__ = [
    "CamelModel",
    "PageParams",
    "PaginationInfo",
    "Page",
    "ErrorResponse",
    "MessageResponse",
    "CountResponse",
    "CreateCampaignRequest",
    "UpdateCampaignRequest",
    "CampaignResponse",
    "ModerationRequest",
    "BulkModerationRequest",
    "BulkModerationResponse",
    "CreateDonationRequest",
    "CreateDonationResponse",
    "RefundRequest",
    "DonationPublicResponse",
    "DonationResponse",
    "CampaignDonationStats",
    "PlatformDonationStats",
    "TopDonor",
    "MonthlyTrend",
    "DonationAnalytics",
    "RegisterUserRequest",
    "LoginRequest",
    "UpdateUserRequest",
    "ChangePasswordRequest",
    "UserResponse",
    "AvailabilityResponse",
    "UserStats",
    "TokenRegisterRequest",
    "TokenLoginRequest",
    "AuthResponse",
    "CreatePaymentIntentRequest",
    "PaymentIntentResponse",
    "ConfirmPaymentIntentRequest",
    "PaymentMethodInfo",
    "PaymentMethodsResponse",
    "FeeBreakdownResponse",
    "WebhookAck",
    "UploadResponse",
    "DeleteUploadResponse",
    "OptimizedUrlResponse",
    "CampaignAnalytics",
    "TopCampaign",
    "CampaignTrendPoint",
    "DailyCount",
    "UserAnalytics",
    "ActiveUser",
    "FinancialAnalytics",
    "AdminDashboard",
    "AdminStats",
    "MaintenanceReport",
    "UserDetails",
]
