# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
