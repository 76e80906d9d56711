"""
Gmail API authentication module
"""
import os
import pickle

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

# Reading labels is all the rules engine needs
SCOPES = [
    'https://www.googleapis.com/auth/gmail.readonly',
]


def get_client_config():
    """Get OAuth client configuration from environment variables"""
    return {
        "installed": {
            "client_id": os.getenv("GMAIL_CLIENT_ID"),
            "project_id": os.getenv("GMAIL_PROJECT_ID"),
            "auth_uri": os.getenv("GMAIL_AUTH_URI"),
            "token_uri": os.getenv("GMAIL_TOKEN_URI"),
            "auth_provider_x509_cert_url": os.getenv("GMAIL_AUTH_PROVIDER_CERT_URL"),
            "client_secret": os.getenv("GMAIL_CLIENT_SECRET"),
            "redirect_uris": ["http://localhost"]
        }
    }


def build_service(access_token: str):
    """Build a Gmail service from a bare access token; refreshing it is the caller's job"""
    creds = Credentials(token=access_token)
    return build('gmail', 'v1', credentials=creds, cache_discovery=False)


def get_access_token() -> str:
    """Get an access token, running the installed-app OAuth flow if needed"""
    token = os.getenv('GMAIL_ACCESS_TOKEN')
    if token:
        return token

    creds = None
    token_file = os.getenv('GMAIL_TOKEN_FILE', '.secrets/token.pickle')

    # Create token directory if it doesn't exist
    token_dir = os.path.dirname(token_file)
    if token_dir and not os.path.exists(token_dir):
        os.makedirs(token_dir)

    # Load existing credentials if they exist
    if os.path.exists(token_file):
        with open(token_file, 'rb') as token:
            creds = pickle.load(token)

    # If there are no (valid) credentials available, let the user log in.
    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        else:
            flow = InstalledAppFlow.from_client_config(
                get_client_config(),
                SCOPES
            )
            creds = flow.run_local_server(port=0)

        # Save the credentials for the next run
        with open(token_file, 'wb') as token:
            pickle.dump(creds, token)

    return creds.token
