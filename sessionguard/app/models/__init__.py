# Both models are imported together so string relationships ("User",
# "RefreshToken") resolve whichever module is imported first.
from sessionguard.app.models.user import User, UserRole  # noqa: F401
from sessionguard.app.models.refresh_token import RefreshToken  # noqa: F401
