# This file is part of ec2net. See LICENSE file for license information.
"""Policy routing configuration for EC2 network interfaces."""

__version__ = "2.5.0"
