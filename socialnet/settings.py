# --------------------------------------------------
# 0.  Drop-in env loader
# --------------------------------------------------
import os
from dotenv import load_dotenv
load_dotenv()          # reads .env from same dir

# --------------------------------------------------
# 1.  Core Django
# --------------------------------------------------
from datetime import timedelta
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
SECRET_KEY                  = os.getenv('SECRET_KEY', 'django-insecure-7r!k2m#p0q1x@c9v4b8n6z3w5e$t^y&u*i(o)p-a+s=d_f')
DEBUG                       = os.getenv('DEBUG', 'True').lower() in ('true', '1', 'yes')
ALLOWED_HOSTS               = [h.strip() for h in os.getenv('ALLOWED_HOSTS', '*').split(',') if h.strip()]

# --------------------------------------------------
# 2.  Installed Apps
# --------------------------------------------------
DJANGO_APPS = [
    'daphne',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
]
THIRD_PARTY_APPS = [
    'rest_framework',
    'strawberry.django',
    'corsheaders',
    'channels',
    'graphql_jwt.refresh_token.apps.RefreshTokenConfig',
]
LOCAL_APPS = [
    'apps.users.apps.UsersConfig',
    'apps.graphql_api',
    'apps.chat.apps.ChatConfig',
]
INSTALLED_APPS = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS
FILE_UPLOAD_MAX_MEMORY_SIZE = 5242880

# --------------------------------------------------
# 3.  Middleware
# --------------------------------------------------
MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]
ROOT_URLCONF = 'socialnet.urls'
AUTH_USER_MODEL = 'users.User'

# --------------------------------------------------
# 4.  Templates
# --------------------------------------------------
TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

# --------------------------------------------------
# 5.  ASGI
# --------------------------------------------------
ASGI_APPLICATION = 'socialnet.asgi.application'

# --------------------------------------------------
# 6.  PostgreSQL
# --------------------------------------------------
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.getenv('POSTGRES_NAME', 'socialnet'),
        'USER': os.getenv('POSTGRES_USER', 'postgres'),
        'PASSWORD': os.getenv('POSTGRES_PASSWORD', 'postgres'),
        'HOST': os.getenv('POSTGRES_HOST', 'localhost'),
        'PORT': int(os.getenv('POSTGRES_PORT', 5432)),
    }
}

# --------------------------------------------------
# 7.  Redis / Channels
# --------------------------------------------------
_redis_host = os.getenv('REDIS_HOST', 'localhost')
_redis_port = int(os.getenv('REDIS_PORT', 6379))

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.redis.RedisCache',
        'LOCATION': f'redis://{_redis_host}:{_redis_port}/{os.getenv("REDIS_DB_CACHE", 1)}',
    }
}

if os.getenv('CHANNEL_LAYER_BACKEND', 'redis').lower() == 'memory':
    CHANNEL_LAYERS = {
        'default': {'BACKEND': 'channels.layers.InMemoryChannelLayer'},
    }
else:
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels_redis.core.RedisChannelLayer',
            'CONFIG': {
                'hosts': [(_redis_host, _redis_port)],
                'prefix': os.getenv('CHANNEL_LAYER_PREFIX', 'socialnet'),
            },
        },
    }

# --------------------------------------------------
# 8.  Password validators
# --------------------------------------------------
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

# --------------------------------------------------
# 9.  Internationalization
# --------------------------------------------------
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# --------------------------------------------------
# 10.  Static / Media
# --------------------------------------------------
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
MEDIA_URL  = '/media/'
MEDIA_ROOT = BASE_DIR / 'media'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# --------------------------------------------------
# 11.  CORS
# --------------------------------------------------
CORS_ALLOW_ALL_ORIGINS = True
CSRF_COOKIE_SAMESITE  = 'Lax'
SESSION_COOKIE_SAMESITE = 'Lax'
CORS_ALLOW_CREDENTIALS = True
CSRF_TRUSTED_ORIGINS = [o.strip() for o in os.getenv('CSRF_TRUSTED_ORIGINS', 'http://localhost:5173').split(',') if o.strip()]

# --------------------------------------------------
# 12.  REST framework
# --------------------------------------------------
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'apps.users.auth.GraphQLJWTAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
}

# --------------------------------------------------
# 13.  GraphQL JWT
# --------------------------------------------------
JWT_EXPIRATION_DELTA      = timedelta(minutes=int(os.getenv('JWT_EXPIRATION_MINUTES', 120)))
JWT_REFRESH_EXPIRATION_DELTA = timedelta(days=int(os.getenv('JWT_REFRESH_EXPIRATION_DAYS', 30)))

GRAPHQL_JWT = {
    'JWT_VERIFY_EXPIRATION': True,
    'JWT_LONG_RUNNING_REFRESH_TOKEN': True,
    'JWT_EXPIRATION_DELTA': JWT_EXPIRATION_DELTA,
    'JWT_REFRESH_EXPIRATION_DELTA': JWT_REFRESH_EXPIRATION_DELTA,
    'JWT_ERROR_HANDLER': 'apps.graphql_api.utils.jwt_error_handler',
}
AUTHENTICATION_BACKENDS = [
    'graphql_jwt.backends.JSONWebTokenBackend',
    'django.contrib.auth.backends.ModelBackend',
]

# --------------------------------------------------
# 14.  Messaging
# --------------------------------------------------
MESSAGING = {
    'MAX_MESSAGE_LENGTH': int(os.getenv('MESSAGING_MAX_MESSAGE_LENGTH', 5000)),
    'MAX_GROUP_SIZE': int(os.getenv('MESSAGING_MAX_GROUP_SIZE', 256)),
}

# --------------------------------------------------
# 15.  Logging
# --------------------------------------------------
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'WARNING').upper(),
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}
