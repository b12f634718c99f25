from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")
    site_url: str = Field("http://localhost:3000", alias="SITE_URL")
    currency: str = Field("cad", alias="STORE_CURRENCY")

    # Hosted auth provider (JWT secret of the project)
    auth_jwt_secret: str = Field("", alias="SUPABASE_JWT_SECRET")
    auth_jwt_audience: str = Field("authenticated", alias="SUPABASE_JWT_AUDIENCE")

    stripe_secret_key: str = Field("", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field("", alias="STRIPE_WEBHOOK_SECRET")
    stripe_api_version: str = Field("2024-09-30.acacia", alias="STRIPE_API_VERSION")
    stripe_automatic_tax: bool = Field(True, alias="STRIPE_AUTOMATIC_TAX")

    square_access_token: str = Field("", alias="SQUARE_ACCESS_TOKEN")
    square_location_id: str = Field("", alias="SQUARE_LOCATION_ID")
    square_api_base: str = Field("https://connect.squareup.com/v2", alias="SQUARE_API_BASE")
    square_currency: str = Field("CAD", alias="SQUARE_CURRENCY")
    square_webhook_signature_key: str = Field("", alias="SQUARE_WEBHOOK_SIGNATURE_KEY")
    square_webhook_notification_url: str = Field("", alias="SQUARE_WEBHOOK_NOTIFICATION_URL")

    brevo_api_key: str = Field("", alias="BREVO_API_KEY")
    brevo_api_url: str = Field("https://api.brevo.com/v3/smtp/email", alias="BREVO_API_URL")
    brevo_from_email: str = Field("", alias="BREVO_FROM_EMAIL")
    brevo_from_name: str = Field("Thrift Barn Furniture", alias="BREVO_FROM_NAME")
    services_owner_email: str = Field("", alias="SERVICES_OWNER_EMAIL")

    monthly_drop_cron_secret: str = Field("", alias="MONTHLY_DROP_CRON_SECRET")
    barn_burner_cron_secret: str = Field("", alias="BARN_BURNER_CRON_SECRET")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


settings = Settings()
