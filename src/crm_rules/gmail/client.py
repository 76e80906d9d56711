"""
Gmail API client used to read message categories

Gmail has no Outlook-style categories; user labels on a message play that
role, so a message's categories are the names of its user labels.
"""
from typing import Dict, List, Optional
import logging

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from ..errors import ProviderFetchFailure
from .auth import build_service

logger = logging.getLogger(__name__)


class GmailClient:
    """Gmail API client for the calls the rules engine needs"""

    def __init__(self, service: Resource):
        self.service = service
        self.user_id = 'me'
        self._label_names: Optional[Dict[str, str]] = None

    def get_message(self, msg_id: str) -> Dict:
        """Get a message's metadata (label ids included)"""
        try:
            return self.service.users().messages().get(
                userId=self.user_id,
                id=msg_id,
                format='minimal'
            ).execute()
        except HttpError as e:
            logger.error(f"HTTP error getting message {msg_id}: {e.resp.status} - {e.content}")
            raise ProviderFetchFailure(f"Could not fetch message {msg_id}: {e.resp.status}") from e
        except Exception as e:
            logger.error(f"Failed to get message {msg_id}: {e}")
            raise ProviderFetchFailure(f"Could not fetch message {msg_id}: {e}") from e

    def user_label_names(self) -> Dict[str, str]:
        """Map of user label id -> name, fetched once per client"""
        if self._label_names is None:
            try:
                results = self.service.users().labels().list(userId=self.user_id).execute()
            except HttpError as e:
                logger.error(f"HTTP error listing labels: {e.resp.status} - {e.content}")
                raise ProviderFetchFailure(f"Could not list labels: {e.resp.status}") from e
            except Exception as e:
                logger.error(f"Failed to list labels: {e}")
                raise ProviderFetchFailure(f"Could not list labels: {e}") from e
            self._label_names = {
                label['id']: label['name']
                for label in results.get('labels', [])
                if label.get('type') == 'user'
            }
            logger.debug(f"Loaded {len(self._label_names)} user labels")
        return self._label_names

    def fetch_message_categories(self, msg_id: str) -> List[str]:
        """Names of the user labels on a message, in the order Gmail returns them"""
        message = self.get_message(msg_id)
        names = self.user_label_names()
        categories = [names[label_id] for label_id in message.get('labelIds', []) if label_id in names]
        logger.debug(f"Message {msg_id} categories: {categories}")
        return categories


def fetch_email_categories(external_id: str, access_token: str) -> List[str]:
    """Fetch a message's categories with a caller-supplied access token"""
    return GmailClient(build_service(access_token)).fetch_message_categories(external_id)
