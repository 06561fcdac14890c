# This file is part of ec2net. See LICENSE file for license information.
