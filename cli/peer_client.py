"""HTTP client for communicating with a peer's gateway."""

import time
import uuid
from typing import Optional

import httpx

from common.logging_config import get_logger
from cli.config import Config
from cli.constants import GREEN, RESET, YELLOW
from cli.utils import format_kb, short_id

logger = get_logger(__name__)

# Error codes of operation failures; retrying them would rerun the operation.
NON_RETRYABLE_CODES = {'INSUFFICIENT_REPLICATION', 'RESTORE_FAILED', 'KEY_MATERIAL', 'IO_ERROR'}


class PeerClient:
    """HTTP client for the peer gateway API with retry logic and error handling."""

    def __init__(self, config: Config):
        """
        Initialize peer client.

        Args:
            config: Configuration instance
        """
        self.config = config
        self.session = httpx.Client(
            base_url=config.get_base_url(),
            timeout=config.get_timeout()
        )
        self.request_id = None
        logger.info(f"Initialized PeerClient [base_url={config.get_base_url()}]")

    def reconnect(self) -> None:
        """Rebuild the HTTP session after the configured peer changed."""
        self.session.close()
        self.session = httpx.Client(
            base_url=self.config.get_base_url(),
            timeout=self.config.get_timeout()
        )
        logger.info(f"PeerClient now targets {self.config.get_base_url()}")

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[str]:
        try:
            return response.json().get('code')
        except ValueError:
            return None

    def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic on 5xx errors and network failures.

        Server errors that report an operation failure are returned at once.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            max_retries: Max retry attempts (uses config default if None)
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            HTTP response object

        Raises:
            ConnectionError: If max retries exceeded or connection fails
        """
        retry_config = self.config.get_retry_config()
        max_retries = max_retries if max_retries is not None else retry_config['max_retries']
        backoff = retry_config['retry_backoff_multiplier']

        last_exception = None

        self.request_id = str(uuid.uuid4())
        if 'headers' not in kwargs:
            kwargs['headers'] = {}
        kwargs['headers']['X-Request-ID'] = self.request_id

        logger.debug(
            f"Making request: {method} {endpoint} [request_id={self.request_id}]"
        )

        for attempt in range(max_retries + 1):
            try:
                response = self.session.request(method, endpoint, **kwargs)

                logger.debug(
                    f"Response received: {method} {endpoint} status={response.status_code} [request_id={self.request_id}]"
                )

                if 400 <= response.status_code < 500:
                    logger.warning(
                        f"Client error: {method} {endpoint} status={response.status_code} [request_id={self.request_id}]"
                    )
                    return response

                if (
                    response.status_code >= 500
                    and attempt < max_retries
                    and self._error_code(response) not in NON_RETRYABLE_CODES
                ):
                    delay = backoff ** attempt
                    logger.warning(
                        f"Server error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {endpoint} status={response.status_code}, retrying in {delay}s [request_id={self.request_id}]"
                    )
                    time.sleep(delay)
                    continue

                return response

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_exception = e
                if attempt < max_retries:
                    delay = backoff ** attempt
                    logger.warning(
                        f"Network error (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} {endpoint} error={type(e).__name__}, retrying in {delay}s [request_id={self.request_id}]"
                    )
                    time.sleep(delay)
                    continue
                else:
                    logger.error(
                        f"Network error (max retries exceeded): {method} {endpoint} error={e} [request_id={self.request_id}]"
                    )

        if isinstance(last_exception, httpx.ConnectError):
            raise ConnectionError("Cannot connect to peer. Is it running?")
        elif isinstance(last_exception, httpx.TimeoutException):
            raise ConnectionError("Request timed out. The operation may still be running on the peer.")
        raise ConnectionError("Max retries exceeded")

    def _format_error(self, response: httpx.Response) -> str:
        """
        Map HTTP errors to user-friendly messages.

        Args:
            response: HTTP response object

        Returns:
            User-friendly error message
        """
        try:
            error_data = response.json()
            detail = error_data.get('detail', 'Unknown error')
            code = error_data.get('code', 'UNKNOWN')
        except ValueError:
            detail = response.text if response.text else 'Unknown error'
            code = 'UNKNOWN'

        error_messages = {
            'INVALID_REQUEST': f'Invalid request: {detail}',
            'FILE_NOT_FOUND': 'File not found on the peer host.',
            'FILE_NOT_BACKED_UP': 'No backup of this file is known to the network.',
            'FILE_TOO_LARGE': 'File is too large to back up.',
            'OPERATION_IN_PROGRESS': 'The same operation is already running. Try again later.',
            'INSUFFICIENT_REPLICATION': f'Backup incomplete: {detail}',
            'RESTORE_FAILED': f'Restore failed: {detail}',
            'KEY_MATERIAL': 'Peer has no usable key material.',
        }

        if code in error_messages:
            return error_messages[code]

        status_messages = {
            400: 'Bad request',
            404: 'Not found',
            409: 'Conflict',
            413: 'File too large',
            422: 'Invalid arguments',
            500: 'Server error',
            502: 'Bad gateway',
            503: 'Service unavailable',
        }

        message = status_messages.get(response.status_code, detail)
        return f"{message} (Code: {code})" if code != 'UNKNOWN' else message

    def _call(self, action: str, method: str, endpoint: str, render, **kwargs) -> str:
        try:
            response = self._request_with_retry(method, endpoint, **kwargs)
            if response.status_code == 200:
                return render(response.json())
            logger.warning(f"{action} failed: status={response.status_code}")
            return f"{action} failed: {self._format_error(response)}"
        except ConnectionError as e:
            logger.error(f"Connection error during {action.lower()}: {e}")
            return f"Error: {e}"
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Unexpected error during {action.lower()}: {e}", exc_info=True)
            return f"Unexpected error during {action.lower()}: {e}"

    def backup(self, path: str, replication_degree: int) -> str:
        """
        Back up a file on the peer.

        Args:
            path: File path on the peer host
            replication_degree: Desired copies per chunk

        Returns:
            Formatted result message
        """
        logger.info(f"Backing up {path} with degree {replication_degree}")

        def render(data: dict) -> str:
            return (
                f"{GREEN}Backup complete{RESET}: {data['path']}\n"
                f"Content ID: {data['content_id']}\n"
                f"Chunks: {data['total_chunks']}  Replication degree: {data['replication_degree']}"
            )

        return self._call(
            'Backup', 'POST', '/backup', render,
            json={'path': path, 'replication_degree': replication_degree}
        )

    def restore(self, path: str, content_id: Optional[str] = None) -> str:
        """
        Restore a file on the peer.

        Args:
            path: Original file path
            content_id: Content ID to ask the network for if the peer has no record

        Returns:
            Formatted result message
        """
        logger.info(f"Restoring {path}")

        def render(data: dict) -> str:
            return (
                f"{GREEN}Restore complete{RESET}: {data['output_path']}\n"
                f"Content ID: {data['content_id']}  Chunks: {data['total_chunks']}"
            )

        return self._call(
            'Restore', 'POST', '/restore', render,
            json={'path': path, 'content_id': content_id}
        )

    def cancel_restore(self, content_id: str) -> str:
        """
        Cancel a running restore.

        Returns:
            Formatted result message
        """
        def render(data: dict) -> str:
            if data['cancelled']:
                return f"Restore of {short_id(content_id)} cancelled"
            return f"No restore of {short_id(content_id)} is running"

        return self._call(
            'Cancel', 'POST', '/restore/cancel', render,
            max_retries=0, json={'content_id': content_id}
        )

    def delete(self, path: str) -> str:
        """
        Delete a backed-up file from every peer.

        Returns:
            Formatted result message
        """
        logger.info(f"Deleting {path}")

        def render(data: dict) -> str:
            lines = [f"{GREEN}Delete sent{RESET} for {short_id(data['content_id'])}"]
            if data['confirmed_peers']:
                lines.append(f"Confirmed by peers: {', '.join(map(str, data['confirmed_peers']))}")
            if data['pending_peers']:
                lines.append(
                    f"{YELLOW}Pending{RESET} on peers: {', '.join(map(str, data['pending_peers']))} "
                    f"(retried when they come back online)"
                )
            return '\n'.join(lines)

        return self._call('Delete', 'POST', '/delete', render, json={'path': path})

    def reclaim(self, max_kb: int) -> str:
        """
        Set the peer's storage cap.

        Returns:
            Formatted result message
        """
        logger.info(f"Reclaiming space down to {max_kb} KB")

        def render(data: dict) -> str:
            lines = [
                f"{GREEN}Reclaim complete{RESET}: cap {format_kb(data['max_kb'])}, "
                f"using {format_kb(data['used_kb'])}"
            ]
            for chunk in data['evicted']:
                lines.append(f"  evicted {short_id(chunk['content_id'])} #{chunk['chunk_index']}")
            if not data['evicted']:
                lines.append("  nothing evicted")
            return '\n'.join(lines)

        return self._call('Reclaim', 'POST', '/reclaim', render, json={'max_kb': max_kb})

    def info(self) -> str:
        """
        Fetch the peer's state report.

        Returns:
            Formatted report
        """
        def render(data: dict) -> str:
            lines = [
                f"Peer {data['peer_id']} (protocol {data['protocol_version']})",
                f"Storage: {format_kb(data['used_kb'])} / {format_kb(data['max_kb'])}",
                "",
                f"Backed up files ({len(data['backed_up_files'])}):",
            ]
            for report in data['backed_up_files']:
                lines.append(f"  {report['path']}")
                lines.append(f"    id={short_id(report['content_id'])} desired={report['desired_degree']}")
                for index, perceived in sorted(report['chunks'].items(), key=lambda kv: int(kv[0])):
                    lines.append(f"    chunk {index}: perceived {perceived}")

            lines.append("")
            lines.append(f"Stored chunks ({len(data['stored_chunks'])}):")
            for chunk in data['stored_chunks']:
                lines.append(
                    f"  {short_id(chunk['content_id'])} #{chunk['chunk_index']} "
                    f"{format_kb(chunk['size_kb'])} desired={chunk['desired_degree']} "
                    f"perceived={chunk['perceived_degree']}"
                )

            if data['pending_deletes']:
                lines.append("")
                lines.append("Pending deletes:")
                for peer_id, content_ids in sorted(data['pending_deletes'].items(), key=lambda kv: int(kv[0])):
                    lines.append(f"  peer {peer_id}: {', '.join(short_id(c) for c in content_ids)}")
            return '\n'.join(lines)

        return self._call('Info', 'GET', '/info', render)
