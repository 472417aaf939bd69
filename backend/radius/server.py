"""
RADIUS Accounting Server

This module implements the UDP server that receives Accounting-Request
packets from NAS clients and hands each one to a worker thread.
"""

import logging
import os
import sys
import socket
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from pyrad import dictionary, server

from radius.exceptions import AccountingError

logger = logging.getLogger(__name__)

DEFAULT_DICTIONARY = Path(__file__).parent / 'dictionary.txt'


class RadiusServer(server.Server):
    """
    RADIUS accounting server implementation using pyrad.

    The pyrad loop only reads and decodes datagrams; each accounting packet is
    processed on a ThreadPoolExecutor worker and answered from there.
    Authentication is not served.
    """

    def __init__(self, dict_path=None, acct_port=1813, bind_address='0.0.0.0', workers=8):
        """
        Initialize the RADIUS server.

        Args:
            dict_path: Path to RADIUS dictionary file
            acct_port: Accounting port (default 1813)
            bind_address: Address to bind to (default 0.0.0.0)
            workers: Number of packet worker threads
        """
        if dict_path is None:
            dict_path = DEFAULT_DICTIONARY

        self.radius_dict = dictionary.Dictionary(str(dict_path))

        super().__init__(
            dict=self.radius_dict,
            acctport=acct_port,
            hosts={},
            auth_enabled=False,
            acct_enabled=True,
            coa_enabled=False
        )

        self.bind_address = bind_address
        self.acct_port = acct_port
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='acct')

        from radius.acct_handler import AccountingHandler
        self.acct_handler = AccountingHandler(self.radius_dict)

        logger.info(f"RADIUS accounting server initialized - {bind_address}:{acct_port}, "
                    f"{workers} workers")

    def _AddSecret(self, pkt):
        """
        Override pyrad's _AddSecret to support multiple NAS clients with the same IP
        by also checking the NAS-Identifier.

        This method is called by pyrad before HandleAcctPacket. The resolved
        NAS is attached to the packet for the accounting handler.
        """
        pkt.nas = None
        try:
            ip = pkt.source[0]

            # Extract NAS-Identifier (Attribute 32)
            identifier = None
            if 32 in pkt:
                val = pkt[32]
                if val:
                    raw_id = val[0]
                    if isinstance(raw_id, bytes):
                        identifier = raw_id.decode('utf-8', errors='ignore')
                    else:
                        identifier = str(raw_id)

            from nas.models import NASClient
            nas = NASClient.get_best_match(ip, identifier)

            if nas:
                pkt.secret = nas.get_secret_bytes()
                pkt.nas = nas

        except Exception as e:
            logger.error(f"Error resolving NAS secret: {e}")

    def HandleAcctPacket(self, pkt):
        """
        Queue an incoming accounting packet for a worker thread.

        Args:
            pkt: The incoming RADIUS packet (AcctPacket)
        """
        logger.debug(f"Received acct packet from {pkt.source}")
        self.executor.submit(self.process_acct_packet, pkt)

    def process_acct_packet(self, pkt):
        """
        Apply an accounting packet and acknowledge it if it was accepted.

        Packets that fail are dropped without a response; the NAS will
        retransmit them.

        Args:
            pkt: The incoming RADIUS packet (AcctPacket)
        """
        from django.db import close_old_connections

        try:
            nas = getattr(pkt, 'nas', None)
            if not getattr(pkt, 'secret', None) or nas is None:
                logger.warning(f"Unknown NAS client or secret not found: {pkt.source[0]}")
                return

            if not pkt.VerifyAcctRequest():
                logger.warning(f"Invalid Request Authenticator from {pkt.source[0]}, dropping")
                return

            reply = self.acct_handler.handle_acct_request(pkt, nas)

            # Set source on reply packet for pyrad
            reply.source = pkt.source  # type: ignore

            self.SendReplyPacket(pkt.fd, reply)

        except AccountingError as e:
            logger.warning(f"Dropping acct packet from {pkt.source[0]} "
                           f"[{e.error_code}]: {e.message}")
        except Exception as e:
            logger.exception(f"Error handling acct packet: {e}")
        finally:
            close_old_connections()

    def shutdown(self):
        """Wait for queued packets to finish."""
        self.executor.shutdown(wait=True)


def setup_django():
    """
    Set up Django environment for standalone execution.
    """
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

    import django
    django.setup()


def configure_logging(level='INFO'):
    """
    Set the level of the application loggers and the root logger.

    Handlers come from the Django LOGGING setting.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    level = getattr(logging, level.upper())
    logging.getLogger().setLevel(level)
    for name in ('radius', 'sessions', 'users', 'nas', 'scheduler'):
        logging.getLogger(name).setLevel(level)


def run_server(acct_port=1813, bind_address='0.0.0.0', log_level='INFO', workers=8):
    """
    Run the RADIUS accounting server.

    Args:
        acct_port: Accounting port (default 1813)
        bind_address: Address to bind to (default 0.0.0.0)
        log_level: Logging level (default INFO)
        workers: Number of packet worker threads
    """
    setup_django()
    configure_logging(log_level)

    from scheduler.scheduler import start_scheduler, stop_scheduler
    if start_scheduler():
        logger.info("Background scheduler started")

    logger.info("Starting RADIUS accounting server...")

    srv = None
    try:
        srv = RadiusServer(
            acct_port=acct_port,
            bind_address=bind_address,
            workers=workers
        )
        srv.BindToAddress(bind_address)

        logger.info("RADIUS server is running. Press Ctrl+C to stop.")
        srv.Run()

    except PermissionError:
        logger.error(f"Permission denied binding to port {acct_port}. "
                     f"Try running with elevated privileges or use a port > 1024.")
        sys.exit(1)
    except socket.error as e:
        logger.error(f"Socket error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("RADIUS server stopped.")
    finally:
        if srv is not None:
            srv.shutdown()
        stop_scheduler()
