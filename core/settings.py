from environs import Env
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'facilitator',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'facilitator.middleware.RequestIDMiddleware',
]

ROOT_URLCONF = 'core.urls'

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

WSGI_APPLICATION = 'core.wsgi.application'


DATABASE_ENGINE = env.str('DATABASE_ENGINE', 'django.db.backends.sqlite3')

if DATABASE_ENGINE.endswith('sqlite3'):
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': env.str('DATABASE_NAME', str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': env.str(
                'PGSQL_DATABASE_FACILITATOR',
                env.str('PGSQL_DATABASE', 'x402_facilitator'),
            ),
            'USER': env.str('PGSQL_USER', 'postgres'),
            'PASSWORD': env.str('PGSQL_PASSWORD', 'mysecretpassword'),
            'HOST': env.str('PGSQL_HOST', 'localhost'),
            'PORT': env.int('PGSQL_PORT', 5432),
        }
    }


AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_L10N = True

USE_TZ = True


STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'static'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
}

# Network id -> RPC endpoint, overriding the registry defaults.
X402_RPC_URLS = env.dict('X402_RPC_URLS', default={})
X402_SIGNER_PRIVATE_KEY = env.str('X402_SIGNER_PRIVATE_KEY', '')
X402_GAS_LIMIT = env.int('X402_GAS_LIMIT', 250000)
X402_TX_TIMEOUT_SECONDS = env.int('X402_TX_TIMEOUT_SECONDS', 120)
X402_MAX_FEE_PER_GAS_WEI = env.int('X402_MAX_FEE_PER_GAS_WEI', 0)
X402_MAX_PRIORITY_FEE_PER_GAS_WEI = env.int(
    'X402_MAX_PRIORITY_FEE_PER_GAS_WEI', 0)
X402_RPC_TIMEOUT_SECONDS = env.float('X402_RPC_TIMEOUT_SECONDS', 5)
X402_RPC_POLL_INTERVAL_SECONDS = env.float('X402_RPC_POLL_INTERVAL_SECONDS', 0.25)

X402_BACKGROUND_WORKERS = env.int('X402_BACKGROUND_WORKERS', 4)
X402_BACKGROUND_INLINE = env.bool('X402_BACKGROUND_INLINE', False)
