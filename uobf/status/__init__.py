"""Status memories, in memory or on disk, recording which files were processed."""