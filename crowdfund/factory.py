"""
Service assembly.

This is the only module that picks concrete collaborators (Stripe,
Cloudinary, the JWT verifier); everything else receives them ready-made.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from crowdfund.core.config import Settings, get_settings
from crowdfund.database.database import build_engine, build_session_factory
from crowdfund.services.admin import AdminService
from crowdfund.services.analytics import AnalyticsService
from crowdfund.services.auth import AuthService
from crowdfund.services.campaign import CampaignService
from crowdfund.services.donation import DonationService
from crowdfund.services.identity import JoseTokenVerifier, TokenVerifier
from crowdfund.services.media_client import CloudinaryStorage, MediaStorage
from crowdfund.services.notifications import Notifier
from crowdfund.services.scheduler import MaintenanceScheduler
from crowdfund.services.stripe_client import PaymentGateway, StripeGateway
from crowdfund.services.upload import UploadService
from crowdfund.services.user import UserService


@dataclass
class Services:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    gateway: PaymentGateway
    verifier: TokenVerifier
    notifier: Notifier
    campaigns: CampaignService
    donations: DonationService
    users: UserService
    auth: AuthService
    analytics: AnalyticsService
    admin: AdminService
    uploads: UploadService
    scheduler: MaintenanceScheduler


def build_services(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    gateway: Optional[PaymentGateway] = None,
    storage: Optional[MediaStorage] = None,
    verifier: Optional[TokenVerifier] = None,
    notifier: Optional[Notifier] = None,
) -> Services:
    """Construct every service once; any collaborator can be swapped for a fake"""
    settings = settings or get_settings()
    engine = engine or build_engine(settings.database_url)
    session_factory = build_session_factory(engine)

    gateway = gateway or StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)
    storage = storage or CloudinaryStorage(
        settings.cloudinary_cloud_name,
        settings.cloudinary_api_key,
        settings.cloudinary_api_secret,
    )
    verifier = verifier or JoseTokenVerifier(
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
        audience=settings.auth_jwt_audience,
    )
    notifier = notifier or Notifier()

    campaigns = CampaignService(session_factory, notifier)
    donations = DonationService(session_factory, gateway, notifier, settings)
    users = UserService(session_factory, settings)
    analytics = AnalyticsService(session_factory)

    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        gateway=gateway,
        verifier=verifier,
        notifier=notifier,
        campaigns=campaigns,
        donations=donations,
        users=users,
        auth=AuthService(session_factory, verifier),
        analytics=analytics,
        admin=AdminService(session_factory, analytics, campaigns, users),
        uploads=UploadService(storage, settings.cloudinary_root_folder, settings.max_upload_bytes),
        scheduler=MaintenanceScheduler(donations, settings.stale_sweep_interval_minutes),
    )
