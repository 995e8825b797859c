# =============================================================================
# Account Supervisor Tests
# =============================================================================

import asyncio
from dataclasses import replace

from imap_relay.imap import IMAPAuthenticationError
from imap_relay.sync import AccountSupervisor, SessionManager, Supervisor, TransferPipeline

from fakes import FakeImporter, FakeServer, raw_message, wait_until


def supervisor_for(servers, accounts, importer, restart_delay=0.01):
    def connect(account, on_mailbox_update):
        return servers[account.name].connect(account, on_mailbox_update)

    return Supervisor(
        accounts,
        importer,
        idle_timeout=30,
        restart_delay=restart_delay,
        connection_factory=connect,
    )


async def test_accounts_are_isolated(sample_account):
    broken = replace(sample_account, name="broken", host="imap.broken.example")
    healthy = replace(sample_account, name="healthy")
    servers = {"broken": FakeServer([1, 2]), "healthy": FakeServer([5, 6, 7])}
    servers["broken"].fail("login")
    importer = FakeImporter()
    supervisor = supervisor_for(servers, [broken, healthy], importer)

    await supervisor.start()
    try:
        await wait_until(lambda: servers["healthy"].uids == [])
        await wait_until(lambda: supervisor.account_supervisors["broken"].sessions_started >= 3)

        assert servers["healthy"].current.idling
        assert len(servers["healthy"].connections) == 1
        assert servers["broken"].uids == [1, 2]
        assert importer.imported == [raw_message(5), raw_message(6), raw_message(7)]
    finally:
        await supervisor.stop()


async def test_restarts_with_a_fresh_connection(server, sample_account, importer):
    server.fail("login", times=1)
    supervisor = supervisor_for({"work": server}, [sample_account], importer)

    await supervisor.start()
    try:
        await wait_until(lambda: server.uids == [])

        first, second = server.connections
        assert first.closed
        assert first is not second
        assert second.calls[:2] == ["connect", "login"]

        account_supervisor = supervisor.account_supervisors["work"]
        assert account_supervisor.sessions_started == 2
        assert isinstance(account_supervisor.last_result.error, IMAPAuthenticationError)
    finally:
        await supervisor.stop()


async def test_waits_for_cooldown_before_restarting(server, sample_account, importer):
    server.fail("connect")
    supervisor = supervisor_for({"work": server}, [sample_account], importer, restart_delay=60)

    await supervisor.start()
    try:
        await wait_until(lambda: len(server.connections) == 1)
        await asyncio.sleep(0.05)
        assert len(server.connections) == 1
    finally:
        await supervisor.stop()


async def test_stop_closes_connections(server, sample_account, importer):
    supervisor = supervisor_for({"work": server}, [sample_account], importer)

    await supervisor.start()
    assert supervisor.is_running
    await asyncio.wait_for(server.idle_entered.wait(), timeout=2)

    await supervisor.stop()

    assert not supervisor.is_running
    assert server.current.closed


async def test_labels_follow_the_account_mailbox(sample_account):
    account = replace(sample_account, mailbox="Junk")
    server = FakeServer([3])
    importer = FakeImporter()
    supervisor = supervisor_for({"work": server}, [account], importer)

    await supervisor.start()
    try:
        await wait_until(lambda: server.uids == [])
        assert importer.labels == [["SPAM", "UNREAD"]]
    finally:
        await supervisor.stop()


async def test_account_supervisor_runs_sessions_back_to_back(server, sample_account, importer):
    server.fail("connect", times=2)
    pipeline = TransferPipeline(importer, ["INBOX", "UNREAD"])

    def build():
        return SessionManager(sample_account, pipeline, connection_factory=server.connect)

    account_supervisor = AccountSupervisor(sample_account, build, restart_delay=0)
    task = asyncio.create_task(account_supervisor.run())
    try:
        await asyncio.wait_for(server.idle_entered.wait(), timeout=2)
        assert account_supervisor.sessions_started == 3
        assert server.uids == []
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
