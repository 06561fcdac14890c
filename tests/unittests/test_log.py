# This file is part of ec2net. See LICENSE file for license information.
import logging
import logging.handlers

import pytest

from ec2net import log


@pytest.fixture
def ec2net_logger():
    logger = logging.getLogger("ec2net")
    saved = (logger.level, list(logger.handlers), logger.propagate)
    yield logger
    level, handlers, propagate = saved
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


class TestSetupLogging:
    @pytest.mark.parametrize(
        "debug, level", [(False, logging.INFO), (True, logging.DEBUG)]
    )
    def test_level(self, ec2net_logger, tmp_path, debug, level):
        log.setup_logging(debug=debug, address=str(tmp_path / "nolog"))
        assert level == ec2net_logger.level

    def test_stderr_fallback(self, ec2net_logger, tmp_path):
        log.setup_logging(address=str(tmp_path / "nolog"))
        assert 1 == len(ec2net_logger.handlers)
        assert isinstance(ec2net_logger.handlers[0], logging.StreamHandler)

    def test_syslog_when_socket_exists(self, ec2net_logger, mocker):
        m_syslog = mocker.patch("logging.handlers.SysLogHandler")
        m_syslog.return_value.level = logging.NOTSET
        mocker.patch("ec2net.log.os.path.exists", return_value=True)
        log.setup_logging(address="/dev/log")
        m_syslog.assert_called_once_with(
            address="/dev/log",
            facility=logging.handlers.SysLogHandler.LOG_USER,
        )

    def test_repeated_setup_does_not_stack(self, ec2net_logger, tmp_path):
        log.setup_logging(address=str(tmp_path / "nolog"))
        log.setup_logging(address=str(tmp_path / "nolog"))
        assert 1 == len(ec2net_logger.handlers)
